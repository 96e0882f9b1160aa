"""
Support Triage Orchestrator
Ticket thread sync.

Parses the ticket thread into messages and stores the ones not seen
before as ``TicketResponse`` rows. A message counts as seen when the
first 100 characters of its content match a stored response of the same
investigation.

    agent replies     → logged right away as ``agent_message`` items
    customer replies  → (re)start the debounce timer, one call per message;
                        the debounce evaluation logs them later
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import func

from triage.core.exceptions import AgentError
from triage.integrations import get_ticket_source
from triage.integrations.thread_parser import parse_thread
from triage.integrations.ticket_source import TicketSourceError
from triage.models import db
from triage.models.investigation import TICKET_DATA_FILE, TicketResponse
from triage.services import conversation, documents
from triage.services.debounce import get_debounce_scheduler
from triage.services.investigation_service import get_investigation
from triage.services.locks import investigation_lock

logger = logging.getLogger(__name__)

DEDUP_PREFIX_LENGTH = 100


def _dedup_key(content):
    return (content or "")[:DEDUP_PREFIX_LENGTH]


def _stored_body(investigation_id):
    ticket = documents.read_json(investigation_id, TICKET_DATA_FILE)
    if isinstance(ticket, dict):
        return ticket.get("body") or ticket.get("description")
    return None


def _fetch_body(investigation_id):
    """Thread body from the ticket source, else the stored ticket data."""
    try:
        ticket = get_ticket_source().fetch_ticket(
            investigation_id, cwd=documents.investigation_dir(investigation_id)
        )
    except (AgentError, TicketSourceError) as exc:
        logger.warning("Ticket fetch failed, using stored ticket data: %s", exc,
                       extra={"investigation_id": investigation_id})
        return _stored_body(investigation_id)
    return ticket.get("body") or ticket.get("description") or _stored_body(investigation_id)


def list_responses(investigation_id):
    get_investigation(investigation_id)
    rows = (
        TicketResponse.query.filter_by(investigation_id=investigation_id)
        .order_by(TicketResponse.sequence_number.asc())
        .all()
    )
    return [r.to_dict() for r in rows]


def sync_responses(investigation_id, body=None):
    """
    Store unseen thread messages and feed customer ones to the debounce timer.

    Args:
        investigation_id: Investigation (ticket) id.
        body: Raw thread text; fetched through the ticket source when omitted.

    Returns:
        {"new_count", "new_customer_messages", "new_agent_messages",
         "total_count", "debounce"}
    """
    investigation = get_investigation(investigation_id)
    if body is None:
        body = _fetch_body(investigation_id)
    messages = parse_thread(body or "")

    scheduler = get_debounce_scheduler()
    now = datetime.now(timezone.utc)
    with investigation_lock(investigation_id):
        stored = TicketResponse.query.filter_by(investigation_id=investigation_id).all()
        seen = {_dedup_key(r.content) for r in stored}
        next_seq = (
            db.session.query(func.max(TicketResponse.sequence_number))
            .filter(TicketResponse.investigation_id == investigation_id)
            .scalar() or 0
        ) + 1

        inserted = []
        for message in messages:
            key = _dedup_key(message["content"])
            if not key.strip() or key in seen:
                continue
            seen.add(key)
            response = TicketResponse(
                investigation_id=investigation_id,
                sequence_number=next_seq,
                actor_role=message["actor_role"],
                actor_name=message["actor_name"] or (
                    investigation.customer_name if message["actor_role"] == "customer" else None
                ),
                content=message["content"],
                created_at=message["created_at"],
                fetched_at=now,
                triggered_reanalysis=message["actor_role"] != "customer",
            )
            db.session.add(response)
            db.session.flush()
            inserted.append(response)
            next_seq += 1

        customer = [r for r in inserted if r.actor_role == "customer"]
        agent = [r for r in inserted if r.actor_role != "customer"]
        for response in agent:
            conversation.log_item(
                investigation,
                "agent_message",
                response.content,
                actor_name=response.actor_name or "Support",
                actor_role="agent",
                metadata={"source": "ticket_followup", "sources": []},
            )
        for _ in customer:
            scheduler.start_or_reset_timer(investigation_id)
        if customer:
            investigation.last_customer_message_at = max(
                (r.created_at or now) for r in customer
            )
        investigation.last_response_check_at = now
        db.session.commit()

    if inserted:
        logger.info(
            "Synced %d new response(s) (%d customer)", len(inserted), len(customer),
            extra={"investigation_id": investigation_id},
        )
    return {
        "new_count": len(inserted),
        "new_customer_messages": len(customer),
        "new_agent_messages": len(agent),
        "total_count": len(stored) + len(inserted),
        "debounce": scheduler.get_status(investigation_id),
    }
