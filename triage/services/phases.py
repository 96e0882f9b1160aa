"""
Support Triage Orchestrator
Phase executors.

Three phases feed the four checkpoints:

    phase0  classification     → checkpoint_1_post_classification
    phase1  context gathering  → checkpoint_2_post_context_gathering
    phase2  document synthesis → checkpoint_3_investigation_validation

An executor reads the investigation's documents, calls the agent and
returns a ``PhaseOutcome`` (documents to write, fields to set, items to
log) without touching the database. ``execute_task`` then applies the
outcome under the investigation lock, unless a hard reset superseded the
task's run in the meantime, in which case the outcome is discarded.

Failures set the investigation to ``error`` with the reason persisted;
checkpoint is left unchanged. Agent auth failures carry a remediation
message and ``error_type = "auth"``.
"""

import json
import logging
import time
from datetime import datetime, timezone

from triage.core.exceptions import PhaseError
from triage.integrations import get_agent_client, get_ticket_source
from triage.integrations.agent_cli import extract_citations, parse_delimited_output
from triage.models import db
from triage.models.investigation import (
    CUSTOMER_RESPONSE_FILE,
    FINDINGS_FILE,
    ISSUE_DRAFT_FILE,
    PHASE_COMPLETES_AT,
    SUMMARY_FILE,
    TICKET_DATA_FILE,
    Investigation,
    InvestigationRun,
    PhaseTask,
)
from triage.services import classifier, conversation, documents
from triage.services.locks import investigation_lock
from triage.services.prompt_registry import get_registry

logger = logging.getLogger(__name__)

PHASE_TITLES = {
    "phase0": "Phase 0: Classification",
    "phase1": "Phase 1: Context Gathering",
    "phase2": "Phase 2: Document Synthesis",
}

BUG_CLASSIFICATIONS = {"connector_bug", "product_bug"}

# Documents phase 2 may produce: output section name → (file, doc_type, preview)
SYNTHESIS_DOCUMENTS = {
    SUMMARY_FILE: (SUMMARY_FILE, "summary", "Investigation summary generated"),
    CUSTOMER_RESPONSE_FILE: (CUSTOMER_RESPONSE_FILE, "customer_response", "Customer response drafted"),
    ISSUE_DRAFT_FILE: (ISSUE_DRAFT_FILE, "issue_draft", "Issue draft created"),
    "linear-draft.md": (ISSUE_DRAFT_FILE, "issue_draft", "Issue draft created"),
}


class PhaseOutcome:
    """What a successful phase wants applied to the investigation."""

    def __init__(self, summary=""):
        self.summary = summary
        self.files: dict[str, str] = {}
        self.fields: dict = {}
        self.items: list[dict] = []

    def add_item(self, item_type, content, **kwargs):
        self.items.append({"item_type": item_type, "content": content, **kwargs})


def _activity(investigation_id, phase):
    def write(event_type, message):
        documents.append_activity(investigation_id, phase, event_type, message)
    return write


def _ticket_body(ticket):
    return ticket.get("body") or ticket.get("description") or ""


def _connector_line(ticket):
    return f"Connector: {ticket['connector_name']}" if ticket.get("connector_name") else ""


def _ticket_source_ref(investigation_id, ticket):
    return {"type": "pylon", "id": str(investigation_id), "label": f"Pylon #{investigation_id}",
            "url": ticket.get("link") or ticket.get("pylon_link")}


# ═════════════════════════════════════════════════════════════════════════════
# Executors
# ═════════════════════════════════════════════════════════════════════════════


def run_phase0(investigation):
    """Fetch (or reuse) ticket data and classify it."""
    inv_id = investigation.id
    activity = _activity(inv_id, "phase0")

    ticket = documents.read_json(inv_id, TICKET_DATA_FILE)
    if isinstance(ticket, dict):
        activity("info", "Loaded existing ticket-data.json from disk")
    else:
        activity("info", "Fetching ticket data from the ticket source...")
        ticket = get_ticket_source().fetch_ticket(inv_id, cwd=documents.investigation_dir(inv_id))
        activity("result", f"Ticket fetched: \"{ticket.get('title')}\" — {ticket.get('customer_name')}")
    if not isinstance(ticket, dict) or not ticket:
        raise PhaseError("No ticket data available")

    activity("info", "Running classification engine...")
    fields = classifier.classify(ticket)
    title = ticket.get("title") or "Support Request"
    body = _ticket_body(ticket)
    activity("result", f"Classification: {fields['classification'].replace('_', ' ')}")
    activity("result", f"Product Area: {fields['product_area']}")
    activity("result", f"Priority: {fields['priority']}")

    outcome = PhaseOutcome(summary="awaiting classification review")
    outcome.files[TICKET_DATA_FILE] = json.dumps({**ticket, **fields}, indent=2, default=str)
    outcome.fields = {**fields, "ticket_title": title}

    outcome.add_item(
        "customer_message",
        f"**{title}**\n\n{body}",
        actor_name=fields["customer_name"],
        actor_role="customer",
        content_preview=title,
        metadata={"source": "ticket"},
    )
    connector = f"- **Connector:** {fields['connector_name']}\n" if fields["connector_name"] else ""
    outcome.add_item(
        "system_result",
        (
            "## Classification Complete\n\n"
            f"- **Customer:** {fields['customer_name']}\n"
            f"- **Classification:** {fields['classification'].replace('_', ' ')}\n"
            f"- **Product Area:** {fields['product_area']}\n"
            f"{connector}"
            f"- **Priority:** {fields['priority']}"
        ),
        content_preview=(
            f"Classified as {fields['classification'].replace('_', ' ')} — {fields['product_area']}"
        ),
        metadata={
            "classification": fields["classification"],
            "product_area": fields["product_area"],
            "connector_name": fields["connector_name"],
            "priority": fields["priority"],
            "sources": [
                _ticket_source_ref(inv_id, ticket),
                {"type": "classifier", "id": "local", "label": "Built-in classifier engine"},
            ],
        },
    )
    return outcome


def run_phase1(investigation):
    """Research related issues and local files; produce phase1-findings.md."""
    inv_id = investigation.id
    activity = _activity(inv_id, "phase1")

    ticket = documents.read_json(inv_id, TICKET_DATA_FILE)
    if not isinstance(ticket, dict):
        raise PhaseError("ticket-data.json not found")
    activity("info", f"Loaded ticket: \"{ticket.get('title')}\" ({ticket.get('classification')})")

    local_files = documents.local_context_files(inv_id)
    local_context = ""
    if local_files:
        local_context = "LOCAL INVESTIGATION FILES (from working folder):\n" + "".join(
            f"\n--- {name} ---\n{content}\n" for name, content in local_files
        )
        activity("info", f"Loaded {len(local_files)} files from investigation folder as local context")

    prompt = get_registry().render(
        "context_gathering",
        ticket_id=inv_id,
        customer_name=ticket.get("customer_name"),
        title=ticket.get("title"),
        classification=ticket.get("classification"),
        product_area=ticket.get("product_area"),
        connector_line=_connector_line(ticket),
        body=_ticket_body(ticket),
        local_context=local_context,
    )
    activity("command", "Running agent for context gathering...")
    findings = get_agent_client().run(
        prompt,
        cwd=documents.investigation_dir(inv_id),
        on_output=lambda line: activity("output", line),
    )
    if not findings.strip():
        raise PhaseError("Agent returned no findings")
    activity("result", f"Context gathered — phase1-findings.md ({len(findings)} chars)")

    sources = extract_citations(findings)
    sources += [{"type": "file", "id": name, "label": f"Investigation file: {name}"}
                for name, _ in local_files]

    outcome = PhaseOutcome(summary="awaiting context review")
    outcome.files[FINDINGS_FILE] = findings
    outcome.add_item(
        "system_result",
        findings,
        content_preview=f"Context gathered — {len(findings)} chars of findings",
        metadata={"file": FINDINGS_FILE, "doc_type": "findings", "sources": sources},
    )
    return outcome


def run_phase2(investigation):
    """Synthesize summary, customer response and (for bugs) an issue draft."""
    inv_id = investigation.id
    activity = _activity(inv_id, "phase2")

    ticket = documents.read_json(inv_id, TICKET_DATA_FILE)
    if not isinstance(ticket, dict):
        raise PhaseError("ticket-data.json not found")
    findings = documents.read_text(inv_id, FINDINGS_FILE)
    if findings:
        activity("info", f"Loaded phase1-findings.md ({len(findings)} chars)")
    else:
        activity("info", "No phase 1 findings available — synthesizing from ticket data only")

    is_bug = ticket.get("classification") in BUG_CLASSIFICATIONS
    issue_section = ""
    if is_bug:
        issue_section = (
            f"=== {ISSUE_DRAFT_FILE} ===\n"
            "Issue tracker draft with title, team, priority, labels, description, steps to reproduce."
        )
    prompt = get_registry().render(
        "document_synthesis",
        ticket_id=inv_id,
        customer_name=ticket.get("customer_name"),
        title=ticket.get("title"),
        classification=ticket.get("classification"),
        product_area=ticket.get("product_area"),
        connector_line=_connector_line(ticket),
        priority=ticket.get("priority"),
        body=_ticket_body(ticket),
        findings=findings or "(No prior findings)",
        issue_draft_section=issue_section,
    )
    activity("command", "Running agent for document synthesis...")
    output = get_agent_client().run(
        prompt,
        cwd=documents.investigation_dir(inv_id),
        on_output=lambda line: activity("output", line),
    )
    sections = parse_delimited_output(output)

    outcome = PhaseOutcome()
    for section, content in sections.items():
        if section not in SYNTHESIS_DOCUMENTS:
            continue
        filename, doc_type, preview = SYNTHESIS_DOCUMENTS[section]
        if filename in outcome.files:
            continue
        outcome.files[filename] = content
        activity("result", f"Wrote {filename} ({len(content)} chars)")
        outcome.add_item(
            "system_result",
            content,
            content_preview=preview,
            metadata={
                "file": filename,
                "doc_type": doc_type,
                "sources": [{"type": "file", "id": TICKET_DATA_FILE, "label": "Ticket data"}]
                + ([{"type": "file", "id": FINDINGS_FILE, "label": "Phase 1 findings"}]
                   if findings else []),
            },
        )
    if not outcome.files:
        raise PhaseError("Agent output contained no documents")
    outcome.summary = f"{len(outcome.files)} documents generated"
    return outcome


PHASE_EXECUTORS = {
    "phase0": run_phase0,
    "phase1": run_phase1,
    "phase2": run_phase2,
}


# ═════════════════════════════════════════════════════════════════════════════
# Task execution
# ═════════════════════════════════════════════════════════════════════════════


def _is_superseded(investigation, task):
    return investigation is None or investigation.current_run_number != task.run_number


def _discard(task):
    task.status = "discarded"
    task.completed_at = datetime.now(timezone.utc)
    logger.info(
        "Phase task %d discarded: run %d superseded", task.id, task.run_number,
        extra={"investigation_id": task.investigation_id, "phase": task.phase},
    )


def execute_task(task_id):
    """Run one queued phase task to completion (success, failure or discard)."""
    task = db.session.get(PhaseTask, task_id)
    if task is None or task.status != "queued":
        return
    inv_id = task.investigation_id
    phase = task.phase

    with investigation_lock(inv_id):
        investigation = db.session.get(Investigation, inv_id)
        if _is_superseded(investigation, task):
            _discard(task)
            db.session.commit()
            return
        task.status = "running"
        task.started_at = datetime.now(timezone.utc)
        conversation.log_item(
            investigation, "system_phase", f"Starting {PHASE_TITLES[phase]}",
            phase=phase, run_number=task.run_number,
            metadata={"event": "start", "task_id": task.id},
        )
        db.session.commit()

    documents.append_activity(inv_id, phase, "start",
                              f"Starting {PHASE_TITLES[phase]} for ticket #{inv_id}")
    logger.info("Phase started", extra={"investigation_id": inv_id, "phase": phase,
                                        "run_number": task.run_number})
    started = time.monotonic()
    try:
        outcome = PHASE_EXECUTORS[phase](investigation)
    except Exception as exc:
        duration_ms = int((time.monotonic() - started) * 1000)
        _record_failure(task_id, exc, duration_ms)
        return

    duration_ms = int((time.monotonic() - started) * 1000)
    try:
        _apply_outcome(task_id, outcome, duration_ms)
    except Exception as exc:
        db.session.rollback()
        logger.exception("Applying %s results failed", phase,
                         extra={"investigation_id": inv_id, "phase": phase})
        _record_failure(task_id, exc, duration_ms)


def _apply_outcome(task_id, outcome, duration_ms):
    task = db.session.get(PhaseTask, task_id)
    inv_id = task.investigation_id
    phase = task.phase
    with investigation_lock(inv_id):
        investigation = db.session.get(Investigation, inv_id)
        db.session.refresh(investigation)
        if _is_superseded(investigation, task):
            _discard(task)
            db.session.commit()
            return

        for filename, content in outcome.files.items():
            documents.write_text(inv_id, filename, content)
        for name, value in outcome.fields.items():
            setattr(investigation, name, value)
        checkpoint = PHASE_COMPLETES_AT[phase]
        investigation.status = "waiting"
        investigation.current_checkpoint = checkpoint
        investigation.error_message = None
        investigation.error_type = None

        run = InvestigationRun.query.filter_by(
            investigation_id=inv_id, run_number=task.run_number
        ).first()
        if run is not None:
            run.current_checkpoint = checkpoint

        for item in outcome.items:
            item = dict(item)
            conversation.log_item(
                investigation, item.pop("item_type"), item.pop("content"),
                phase=phase, run_number=task.run_number, **item,
            )
        conversation.log_item(
            investigation, "system_phase",
            f"{PHASE_TITLES[phase]} complete ({duration_ms / 1000:.1f}s)",
            phase=phase, run_number=task.run_number,
            metadata={"event": "complete", "duration_ms": duration_ms, "task_id": task.id},
        )
        task.status = "succeeded"
        task.completed_at = datetime.now(timezone.utc)
        db.session.commit()

    documents.record_metrics(inv_id, **{f"{phase}_duration_ms": duration_ms})
    message = f"{PHASE_TITLES[phase]} complete ({duration_ms / 1000:.1f}s)"
    if outcome.summary:
        message += f" — {outcome.summary}"
    documents.append_activity(inv_id, phase, "complete", message)
    logger.info("Phase complete", extra={"investigation_id": inv_id, "phase": phase,
                                         "checkpoint": checkpoint})


def _record_failure(task_id, exc, duration_ms):
    task = db.session.get(PhaseTask, task_id)
    inv_id = task.investigation_id
    phase = task.phase
    error_type = getattr(exc, "error_type", "general")
    reason = str(exc) or exc.__class__.__name__

    with investigation_lock(inv_id):
        investigation = db.session.get(Investigation, inv_id)
        db.session.refresh(investigation)
        if _is_superseded(investigation, task):
            _discard(task)
            db.session.commit()
            return
        task.status = "failed"
        task.error_message = reason
        task.completed_at = datetime.now(timezone.utc)
        investigation.status = "error"
        investigation.error_message = reason
        investigation.error_type = error_type
        conversation.log_item(
            investigation, "system_phase", f"{PHASE_TITLES[phase]} failed: {reason}",
            phase=phase, run_number=task.run_number,
            metadata={"event": "error", "error": reason, "error_type": error_type,
                      "duration_ms": duration_ms, "task_id": task.id},
        )
        db.session.commit()

    documents.append_activity(inv_id, phase, "error", f"{PHASE_TITLES[phase]} failed: {reason}")
    logger.warning("Phase failed: %s", reason,
                   extra={"investigation_id": inv_id, "phase": phase})
