"""
Support Triage Orchestrator
Phase task runner.

Phase executions are rows in ``phase_tasks`` rather than bare threads, so
their status (queued / running / succeeded / failed / discarded) can be
polled and at most one task per investigation is in flight for the
current run. Tasks left over from an earlier run are allowed to finish;
they discard their own results.

Execution modes (``PHASE_EXECUTION_MODE``):
    thread  — daemon thread per task inside an app context; the request
              that queued it returns immediately
    inline  — run in the calling thread once the queueing commit is done
"""

import logging
import threading
from datetime import datetime, timezone

from flask import current_app

from triage.core.exceptions import StateConflictError, ValidationError
from triage.models import db
from triage.models.investigation import (
    ACTIVE_TASK_STATUSES,
    PHASES,
    Investigation,
    PhaseTask,
)

logger = logging.getLogger(__name__)

INTERRUPTED_MESSAGE = "Phase interrupted by process restart"


def active_task(investigation):
    """The queued/running task of the investigation's current run, if any."""
    return (
        PhaseTask.query.filter(
            PhaseTask.investigation_id == investigation.id,
            PhaseTask.run_number == investigation.current_run_number,
            PhaseTask.status.in_(ACTIVE_TASK_STATUSES),
        )
        .order_by(PhaseTask.id.desc())
        .first()
    )


def ensure_no_active_task(investigation):
    task = active_task(investigation)
    if task is not None:
        raise StateConflictError(
            f"Phase {task.phase} is already {task.status} for investigation {investigation.id}",
            details={"task": task.to_dict()},
        )


class PhaseTaskRunner:
    """Queues phase tasks and runs them in the configured mode."""

    def enqueue(self, investigation, phase) -> PhaseTask:
        """
        Add a queued task for ``phase`` on the investigation's current run.

        Call this inside ``investigation_lock`` before the caller's commit,
        so the in-flight check, the caller's state change and the task row
        land together. Nothing runs until ``start``.

        Raises:
            ValidationError: unknown phase name.
            StateConflictError: a task is already queued or running.
        """
        if phase not in PHASES:
            raise ValidationError(f"Unknown phase: {phase}", details={"phase": phase})
        ensure_no_active_task(investigation)

        task = PhaseTask(
            investigation_id=investigation.id,
            run_number=investigation.current_run_number,
            phase=phase,
            status="queued",
        )
        db.session.add(task)
        db.session.flush()
        return task

    def start(self, task) -> PhaseTask:
        """Run a committed queued task, inline or on a daemon thread."""
        task_id = task.id
        logger.info(
            "Phase task %d starting", task_id,
            extra={"investigation_id": task.investigation_id, "phase": task.phase,
                   "run_number": task.run_number},
        )

        if current_app.config.get("PHASE_EXECUTION_MODE", "thread") == "inline":
            self._execute(task_id)
            db.session.refresh(task)
            return task

        app = current_app._get_current_object()
        t = threading.Thread(
            target=self._execute_in_background,
            args=(app, task_id),
            name=f"phase-task-{task_id}",
            daemon=True,
        )
        t.start()
        return task

    def list_tasks(self, investigation_id: int, limit: int = 50) -> list[dict]:
        q = (
            PhaseTask.query.filter_by(investigation_id=investigation_id)
            .order_by(PhaseTask.id.desc())
            .limit(limit)
        )
        return [t.to_dict() for t in q.all()]

    def recover_interrupted(self) -> int:
        """Fail tasks a previous process left queued/running.

        Investigations whose current run owned such a task move to ``error``
        so the operator can retry. Returns the number of tasks recovered.
        """
        stale = PhaseTask.query.filter(PhaseTask.status.in_(ACTIVE_TASK_STATUSES)).all()
        now = datetime.now(timezone.utc)
        for task in stale:
            task.status = "failed"
            task.error_message = INTERRUPTED_MESSAGE
            task.completed_at = now
            investigation = db.session.get(Investigation, task.investigation_id)
            if investigation and investigation.current_run_number == task.run_number:
                investigation.status = "error"
                investigation.error_message = INTERRUPTED_MESSAGE
                investigation.error_type = "general"
        if stale:
            db.session.commit()
            logger.warning("Recovered %d interrupted phase task(s)", len(stale))
        return len(stale)

    # ── Internal ──────────────────────────────────────────────────────────

    def _execute(self, task_id: int) -> None:
        from triage.services.phases import execute_task

        execute_task(task_id)

    def _execute_in_background(self, app, task_id: int) -> None:
        """Run the task in a background thread with its own app context."""
        with app.app_context():
            try:
                self._execute(task_id)
            except Exception:
                # execute_task records phase failures itself; this only
                # catches failures while recording them.
                logger.exception("Phase task %d crashed", task_id)
                db.session.rollback()
            finally:
                db.session.remove()


def get_task_runner() -> PhaseTaskRunner:
    return current_app.extensions["phase_runner"]
