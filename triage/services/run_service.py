"""
Support Triage Orchestrator
Run ledger service.

A run is one attempt at investigating a ticket. Run #1 starts with the
investigation; every hard reset supersedes the current run and opens
run N+1. Exactly one run per investigation is not ``superseded``.

Hard reset order matters:
    1. supersede the current run
    2. archive documents into run-<N>/ (copy, best-effort per file)
    3. truncate the working copies
    4. open the new run, reset the investigation, log a reset marker
    5. queue phase 0 for the new run
Archival happens before truncation so a crash in between loses nothing.
"""

import logging
from datetime import datetime, timezone

from triage.core.exceptions import NotFoundError
from triage.models import db
from triage.models.investigation import CP1, Investigation, InvestigationRun
from triage.services import conversation, documents
from triage.services.debounce import get_debounce_scheduler
from triage.services.locks import investigation_lock
from triage.services.task_runner import get_task_runner

logger = logging.getLogger(__name__)

# Fields cleared by a hard reset; phase 0 fills them again.
RESET_FIELDS = (
    "customer_name", "classification", "connector_name", "product_area",
    "priority", "suggested_priority", "error_message", "error_type",
    "current_version_id", "anchor_version_id", "new_reply_summary", "resolved_at",
)


def start_run(investigation, trigger_type, trigger_summary, checkpoint=CP1):
    """Open a run with the investigation's current run number (flushed)."""
    run = InvestigationRun(
        investigation_id=investigation.id,
        run_number=investigation.current_run_number,
        trigger_type=trigger_type,
        trigger_summary=trigger_summary,
        status="running",
        current_checkpoint=checkpoint,
    )
    db.session.add(run)
    db.session.flush()
    return run


def get_current_run(investigation_id):
    return (
        InvestigationRun.query.filter(
            InvestigationRun.investigation_id == investigation_id,
            InvestigationRun.status != "superseded",
        )
        .order_by(InvestigationRun.run_number.desc())
        .first()
    )


def list_runs(investigation_id):
    if db.session.get(Investigation, investigation_id) is None:
        raise NotFoundError(resource="Investigation", resource_id=investigation_id)
    runs = (
        InvestigationRun.query.filter_by(investigation_id=investigation_id)
        .order_by(InvestigationRun.run_number.asc())
        .all()
    )
    return [r.to_dict() for r in runs]


def get_run(investigation_id, run_number):
    run = InvestigationRun.query.filter_by(
        investigation_id=investigation_id, run_number=run_number
    ).first()
    if run is None:
        raise NotFoundError(resource="Run", resource_id=run_number)
    return run


def hard_reset(investigation_id):
    """
    Archive the current run and start a fresh one from phase 0.

    Phase 0 is queued in the same commit as the reset and started after it. Tasks still in flight
    for the superseded run finish on their own and discard their results.

    Returns:
        {"previous_run", "new_run", "archive", "task", "investigation"}
    """
    with investigation_lock(investigation_id):
        investigation = db.session.get(Investigation, investigation_id)
        if investigation is None:
            raise NotFoundError(resource="Investigation", resource_id=investigation_id)

        get_debounce_scheduler().cancel_timer(investigation_id)

        previous_run = investigation.current_run_number
        now = datetime.now(timezone.utc)
        for run in InvestigationRun.query.filter(
            InvestigationRun.investigation_id == investigation_id,
            InvestigationRun.status != "superseded",
        ).all():
            run.status = "superseded"
            run.completed_at = run.completed_at or now

        archive = documents.archive_run(investigation_id, previous_run)
        if archive["failed"]:
            logger.warning(
                "Hard reset archived with %d failure(s): %s",
                len(archive["failed"]), ", ".join(archive["failed"]),
                extra={"investigation_id": investigation_id, "run_number": previous_run},
            )
        documents.clear_working_copies(investigation_id)

        new_run = previous_run + 1
        investigation.current_run_number = new_run
        for name in RESET_FIELDS:
            setattr(investigation, name, None)
        investigation.status = "running"
        investigation.current_checkpoint = CP1
        investigation.has_new_reply = False
        start_run(investigation, "hard_reset", "Manual hard reset")

        conversation.log_item(
            investigation,
            "reset_marker",
            f"Investigation hard reset — starting fresh as Run #{new_run}",
            content_preview=f"Hard reset → Run #{new_run}",
            metadata={"trigger": "hard_reset", "previous_run": previous_run, "new_run": new_run},
        )
        runner = get_task_runner()
        task = runner.enqueue(investigation, "phase0")
        db.session.commit()

    logger.info(
        "Hard reset: run %d superseded by run %d", previous_run, new_run,
        extra={"investigation_id": investigation_id, "run_number": new_run},
    )
    runner.start(task)
    return {
        "previous_run": previous_run,
        "new_run": new_run,
        "archive": archive,
        "task": task.to_dict(),
        "investigation": investigation.to_dict(),
    }
