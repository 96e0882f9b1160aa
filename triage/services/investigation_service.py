"""
Support Triage Orchestrator
Investigation service.

Business logic for:
    - Create:   ticket id → directory, run #1, phase 0 queued
    - Read:     get / list (by status) / stats
    - Update:   operator edits of classification fields (enum-validated)
    - Retry:    re-queue the phase owed by the current checkpoint
    - Documents: tracked files, activity log
"""

import logging

from sqlalchemy import func

from triage.core.exceptions import ConflictError, NotFoundError, ValidationError
from triage.models import db
from triage.models.investigation import (
    CLASSIFICATIONS,
    CP1,
    CP4,
    EDITABLE_FIELDS,
    INVESTIGATION_STATUSES,
    PHASE_FOR_RETRY,
    PRIORITIES,
    Investigation,
)
from triage.services import documents
from triage.services.debounce import get_debounce_scheduler
from triage.services.locks import investigation_lock
from triage.services.run_service import get_current_run, start_run
from triage.services.task_runner import active_task, ensure_no_active_task, get_task_runner

logger = logging.getLogger(__name__)


def get_investigation(investigation_id):
    investigation = db.session.get(Investigation, investigation_id)
    if investigation is None:
        raise NotFoundError(resource="Investigation", resource_id=investigation_id)
    return investigation


def investigation_detail(investigation):
    """Investigation dict plus current run, active task and debounce status."""
    d = investigation.to_dict()
    run = get_current_run(investigation.id)
    task = active_task(investigation)
    d["current_run"] = run.to_dict() if run else None
    d["active_task"] = task.to_dict() if task else None
    d["debounce"] = get_debounce_scheduler().get_status(investigation.id)
    return d


# ── Create ───────────────────────────────────────────────────────────────────


def create_investigation(ticket_id):
    """
    Start investigating a ticket.

    Raises:
        ValidationError: ticket id is not a positive integer.
        ConflictError: an investigation for this ticket already exists.
    """
    if not isinstance(ticket_id, int) or isinstance(ticket_id, bool) or ticket_id <= 0:
        raise ValidationError("ticket_id must be a positive integer",
                              details={"ticket_id": ticket_id})

    with investigation_lock(ticket_id):
        if db.session.get(Investigation, ticket_id) is not None:
            raise ConflictError(resource="Investigation", field="id", value=ticket_id)

        documents.investigation_dir(ticket_id, create=True)
        investigation = Investigation(
            id=ticket_id,
            status="running",
            current_checkpoint=CP1,
            current_run_number=1,
            has_new_reply=False,
        )
        db.session.add(investigation)
        db.session.flush()
        start_run(investigation, "manual", "Initial investigation")
        runner = get_task_runner()
        task = runner.enqueue(investigation, "phase0")
        db.session.commit()

    logger.info("Investigation created", extra={"investigation_id": ticket_id, "run_number": 1})
    runner.start(task)
    return investigation


# ── Read ─────────────────────────────────────────────────────────────────────


def list_investigations(status=None):
    if status is not None and status not in INVESTIGATION_STATUSES:
        raise ValidationError(f"Invalid status: {status}", details={"status": status})
    q = Investigation.query
    if status:
        q = q.filter_by(status=status)
    return q.order_by(Investigation.updated_at.desc(), Investigation.id.desc())


def get_stats():
    """Investigation counts per status plus the number flagged with new replies."""
    rows = (
        db.session.query(Investigation.status, func.count(Investigation.id))
        .group_by(Investigation.status)
        .all()
    )
    by_status = {status: 0 for status in sorted(INVESTIGATION_STATUSES)}
    by_status.update({status: count for status, count in rows})
    return {
        "total": sum(by_status.values()),
        "by_status": by_status,
        "new_replies": Investigation.query.filter_by(has_new_reply=True).count(),
    }


def get_files(investigation_id):
    get_investigation(investigation_id)
    return documents.list_files(investigation_id)


def get_activity(investigation_id, since=None):
    get_investigation(investigation_id)
    return documents.read_activity(investigation_id, since=since)


# ── Update ───────────────────────────────────────────────────────────────────


def update_investigation(investigation_id, data):
    """
    Apply operator edits to classification fields.

    Unknown fields and invalid enum values are rejected before anything
    changes. Empty strings clear optional fields.
    """
    unknown = sorted(set(data) - EDITABLE_FIELDS)
    if unknown:
        raise ValidationError("Fields are not editable", details={"fields": unknown})
    if not data:
        raise ValidationError("No fields to update")

    errors = {}
    classification = data.get("classification")
    if classification is not None and classification not in CLASSIFICATIONS:
        errors["classification"] = f"Must be one of: {', '.join(sorted(CLASSIFICATIONS))}"
    priority = data.get("priority")
    if priority is not None and priority not in PRIORITIES:
        errors["priority"] = "Must be one of: P1, P2, P3, P4"
    for name, value in data.items():
        if value is not None and not isinstance(value, str):
            errors[name] = "Must be a string"
    if errors:
        raise ValidationError("Invalid field values", details=errors)

    with investigation_lock(investigation_id):
        investigation = get_investigation(investigation_id)
        for name, value in data.items():
            setattr(investigation, name, value.strip() if value else None)
        db.session.commit()

    logger.info("Investigation fields updated: %s", ", ".join(sorted(data)),
                extra={"investigation_id": investigation_id})
    return investigation


# ── Retry ────────────────────────────────────────────────────────────────────


def retry_investigation(investigation_id):
    """
    Re-run the phase owed by the current checkpoint.

    checkpoint_1 (or no customer yet) → phase 0, checkpoint_2 → phase 1,
    checkpoint_3 → phase 2. At checkpoint_4 there is nothing to re-run,
    so the investigation simply returns to ``waiting``.

    Returns:
        {"investigation", "task"}  (task is None at checkpoint_4)

    Raises:
        StateConflictError: a phase task is already in flight.
    """
    with investigation_lock(investigation_id):
        investigation = get_investigation(investigation_id)
        ensure_no_active_task(investigation)

        checkpoint = investigation.current_checkpoint
        phase = PHASE_FOR_RETRY.get(checkpoint, "phase0")
        if not investigation.customer_name and checkpoint != CP4:
            phase = "phase0"
        runner = get_task_runner()
        task = runner.enqueue(investigation, phase) if phase else None

        investigation.error_message = None
        investigation.error_type = None
        if phase is None:
            investigation.status = "waiting"
        else:
            investigation.status = "running"
        db.session.commit()

    logger.info("Retry requested: %s", phase or "no phase",
                extra={"investigation_id": investigation_id, "checkpoint": checkpoint})
    if task is not None:
        runner.start(task)
    return {
        "investigation": investigation.to_dict(),
        "task": task.to_dict() if task else None,
    }
