"""
Support Triage Orchestrator
Scheduled Jobs.

Concrete job implementations run by the scheduler loop.

Jobs:
    - debounce_sweep: evaluates debounce timers whose quiet period passed
    - untriaged_response_rescan: starts timers for customer replies that
      were stored but never evaluated (e.g. lost on an old process)
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import distinct, select

from triage.models import db
from triage.models.investigation import DebounceTimer, TicketResponse
from triage.services.debounce import get_debounce_scheduler
from triage.services.scheduler_service import register_job

logger = logging.getLogger(__name__)


@register_job("debounce_sweep")
def sweep_debounce_timers(app) -> dict[str, Any]:
    """Evaluate pending customer replies whose debounce window has elapsed."""
    results = get_debounce_scheduler().sweep_due()
    summary = {
        "evaluated": sum(1 for r in results if r["evaluated"]),
        "flagged_new": sum(1 for r in results if r["is_new"]),
        "investigations": [r["investigation_id"] for r in results],
    }
    if results:
        logger.info("Debounce sweep: %d evaluated, %d flagged",
                    summary["evaluated"], summary["flagged_new"])
    return summary


@register_job("untriaged_response_rescan")
def rescan_untriaged_responses(app) -> dict[str, Any]:
    """Start debounce timers for unevaluated customer replies without one."""
    scheduler = get_debounce_scheduler()
    with_timer = select(DebounceTimer.investigation_id)
    investigation_ids = [
        row[0] for row in db.session.query(distinct(TicketResponse.investigation_id))
        .filter(
            TicketResponse.actor_role == "customer",
            TicketResponse.triggered_reanalysis.is_(False),
            TicketResponse.investigation_id.notin_(with_timer),
        )
        .all()
    ]
    for investigation_id in investigation_ids:
        scheduler.start_or_reset_timer(investigation_id)
    db.session.commit()
    if investigation_ids:
        logger.info("Rescan started %d debounce timer(s)", len(investigation_ids))
    return {"timers_started": len(investigation_ids), "investigations": investigation_ids}
