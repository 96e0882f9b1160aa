"""
Support Triage Orchestrator
Checkpoint state machine.

Four fixed gates, one per phase result:

    checkpoint_1_post_classification
    checkpoint_2_post_context_gathering
    checkpoint_3_investigation_validation
    checkpoint_4_solution_check

Transition table for ``apply_checkpoint_action``:

    abort                           → paused, checkpoint unchanged
    confirm|continue|approve @ 1,2  → next checkpoint, running, phase 1/2 queued
    confirm|continue|approve @ 3    → checkpoint_4, waiting (no agent call)
    confirm|continue|approve @ 4    → complete, resolved_at = now
    anything else                   → waiting, checkpoint unchanged
                                      (operator intent recorded, nothing re-run)

Side effects happen in a fixed order: action log entry, "Before: ..."
snapshot, human_decision item, transition, queued phase task. All of it
is one commit.
"""

import logging
from datetime import datetime, timezone

from triage.core.exceptions import ValidationError
from triage.models import db
from triage.models.investigation import (
    ABORT_ACTION,
    ADVANCE_ACTIONS,
    CHECKPOINT_ORDER,
    CP4,
    PHASE_AFTER_CHECKPOINT,
    next_checkpoint,
    validate_checkpoint,
)
from triage.services import conversation, documents
from triage.services.investigation_service import get_investigation
from triage.services.locks import investigation_lock
from triage.services.run_service import get_current_run
from triage.services.snapshot_service import SnapshotService
from triage.services.task_runner import get_task_runner

logger = logging.getLogger(__name__)

OPERATOR_NAME = "TSE"
OPERATOR_ROLE = "tse"


def plan_transition(checkpoint, action):
    """
    Pure transition lookup.

    Returns:
        (status, new_checkpoint, phase_to_queue) where phase_to_queue may be None.
    """
    if action == ABORT_ACTION:
        return "paused", checkpoint, None
    if action in ADVANCE_ACTIONS:
        if checkpoint == CP4:
            return "complete", checkpoint, None
        phase = PHASE_AFTER_CHECKPOINT.get(checkpoint)
        return ("running" if phase else "waiting"), next_checkpoint(checkpoint), phase
    return "waiting", checkpoint, None


def _decision_content(action, feedback):
    content = f"Action: {action}"
    if feedback:
        content += f"\nFeedback: {feedback}"
    return content


def apply_checkpoint_action(investigation_id, checkpoint, action, feedback=None):
    """
    Record an operator decision at a checkpoint and apply the transition.

    The claimed ``checkpoint`` is taken as given; it is not compared to the
    investigation's current checkpoint.

    Returns:
        {"investigation", "version", "task", "transition"}

    Raises:
        NotFoundError: unknown investigation.
        ValidationError: empty action or unknown checkpoint.
        StateConflictError: the action needs a phase while one is in flight.
    """
    action = (action or "").strip()
    if not action:
        raise ValidationError("action is required", details={"action": action})
    if not validate_checkpoint(checkpoint):
        raise ValidationError(
            f"Invalid checkpoint: {checkpoint}",
            details={"checkpoint": checkpoint, "allowed": CHECKPOINT_ORDER},
        )
    feedback = (feedback or "").strip() or None

    with investigation_lock(investigation_id):
        investigation = get_investigation(investigation_id)
        status, new_checkpoint, phase = plan_transition(checkpoint, action)
        runner = get_task_runner()
        task = runner.enqueue(investigation, phase) if phase else None

        now = datetime.now(timezone.utc)
        documents.append_checkpoint_action(investigation_id, {
            "timestamp": now.isoformat(),
            "checkpoint": checkpoint,
            "action": action,
            "feedback": feedback,
        })
        version = SnapshotService.create(
            investigation, checkpoint, f"Before: {action} at {checkpoint}",
            investigation.current_run_number, created_by=OPERATOR_ROLE,
        )
        conversation.log_item(
            investigation,
            "human_decision",
            _decision_content(action, feedback),
            phase=checkpoint,
            actor_name=OPERATOR_NAME,
            actor_role=OPERATOR_ROLE,
            content_preview=f"{action}: {feedback[:80]}" if feedback else action,
            metadata={"action": action, "checkpoint": checkpoint, "feedback": feedback},
            version_id=version.id,
        )

        investigation.status = status
        investigation.current_checkpoint = new_checkpoint
        if status == "complete":
            investigation.resolved_at = now
        run = get_current_run(investigation_id)
        if run is not None:
            run.current_checkpoint = new_checkpoint
            if status == "complete":
                run.status = "complete"
                run.completed_at = now
        db.session.commit()

    logger.info(
        "Checkpoint action applied → %s", status,
        extra={"investigation_id": investigation_id, "checkpoint": checkpoint,
               "action": action, "run_number": investigation.current_run_number},
    )
    if task is not None:
        runner.start(task)
    return {
        "investigation": investigation.to_dict(),
        "version": version.to_dict(),
        "task": task.to_dict() if task else None,
        "transition": {
            "from_checkpoint": checkpoint,
            "to_checkpoint": new_checkpoint,
            "status": status,
            "phase": phase,
        },
    }
