"""
Support Triage Orchestrator
Debounce engine for customer replies.

Customers often send several messages in a row. Instead of reacting to
each one, a per-investigation timer is (re)started on every new customer
message; once the quiet period passes without another message, the
pending replies are evaluated as a batch.

Evaluation never starts a new run. It either
    - flags the investigation (``has_new_reply``) for the operator, or
    - records the replies as ``no_new_info`` customer messages.
Either way the replies are logged to the current run and marked processed.

Timers are persisted as ``DebounceTimer`` rows (due time + pending count),
so a restart re-arms them instead of dropping them. The clock is
injectable; tests advance it and call ``sweep_due`` directly.
"""

import logging
import re
import threading
from datetime import datetime, timedelta, timezone

from flask import current_app

from triage.models import db, ensure_utc, iso
from triage.models.investigation import (
    FINDINGS_FILE,
    TICKET_DATA_FILE,
    DebounceTimer,
    Investigation,
    TicketResponse,
)
from triage.services import conversation, documents
from triage.services.locks import investigation_lock

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_MINUTES = 20
MIN_CONTENT_LENGTH = 10
OVERLAP_THRESHOLD = 0.70

NEW_INFO_INDICATORS = [
    re.compile(r"error\s*(log|message|code|trace)", re.IGNORECASE),
    re.compile(r"stack\s*trace", re.IGNORECASE),
    re.compile(r"reproduce|reproduction|repro\s*steps", re.IGNORECASE),
    re.compile(r"screenshot|screen\s*shot|attached", re.IGNORECASE),
    re.compile(r"log\s*(file|output|dump)", re.IGNORECASE),
    re.compile(r"version\s*\d", re.IGNORECASE),
    re.compile(r"environment|env\s*:", re.IGNORECASE),
    re.compile(r"workaround|work\s*around", re.IGNORECASE),
    re.compile(r"actually|correction|update:", re.IGNORECASE),
    re.compile(r"additional\s*(info|context|detail)", re.IGNORECASE),
    re.compile(r"forgot\s+to\s+mention", re.IGNORECASE),
    re.compile(r"also\s+(wanted|need|should)", re.IGNORECASE),
]

NOISE_PATTERNS = [
    re.compile(r"^(thanks|thank\s+you|ty|thx)\s*[.!]?\s*$", re.IGNORECASE),
    re.compile(r"^(any\s+update|update\s*\?|bump|following\s+up)\b", re.IGNORECASE),
    re.compile(r"^(ok|okay|sure|got\s+it|sounds\s+good)\b", re.IGNORECASE),
    re.compile(r"^(hi|hello|hey)\s*[,.]?\s*$", re.IGNORECASE),
]

STOPWORDS = frozenset("""
    the a an is are was were be been being have has had do does did will would
    could should may might can shall to of in for on with at by from as into
    through during before after above below and but or not no if then than too
    very just so it its this that these those i me my we our you your he she
    they them their what which who whom when where how all each every both few
    more most other some such only own same also about up out off over under
    again here there once hi hello hey thanks thank
""".split())

_NON_TOKEN_RE = re.compile(r"[^a-z0-9\s_-]")

REASON_TOO_SHORT = "Message too short to contain new information"
REASON_NO_CONTENT = "No meaningful content in new messages"
REASON_ACKNOWLEDGMENT = "Message appears to be acknowledgment/follow-up only"
REASON_INDICATOR = (
    "Customer provided new technical details (error logs, reproduction steps, etc.)"
)


def tokenize(text):
    """Lowercase words longer than two characters, stopwords removed."""
    if not text:
        return []
    cleaned = _NON_TOKEN_RE.sub(" ", text.lower())
    return [t for t in cleaned.split() if len(t) > 2 and t not in STOPWORDS]


def _is_noise(message):
    return any(p.search(message) for p in NOISE_PATTERNS)


def evaluate_new_information(new_content, existing_context):
    """
    Decide whether ``new_content`` adds information to ``existing_context``.

    ``new_content`` is one message or a list of pending messages. Checks
    run in order: acknowledgment noise (only when every message is one),
    too short, new-info indicators (override overlap), then token overlap
    against the threshold.

    Returns:
        {"is_new": bool, "reason": str, "overlap_ratio": float | None}
    """
    messages = [new_content] if isinstance(new_content, str) else list(new_content or [])
    messages = [m.strip() for m in messages if m and m.strip()]
    stripped = "\n".join(messages)
    if messages and all(_is_noise(m) for m in messages):
        return {"is_new": False, "reason": REASON_ACKNOWLEDGMENT, "overlap_ratio": None}
    if len(stripped) < MIN_CONTENT_LENGTH:
        return {"is_new": False, "reason": REASON_TOO_SHORT, "overlap_ratio": None}
    if any(p.search(stripped) for p in NEW_INFO_INDICATORS):
        return {"is_new": True, "reason": REASON_INDICATOR, "overlap_ratio": None}

    new_tokens = tokenize(stripped)
    if not new_tokens:
        return {"is_new": False, "reason": REASON_NO_CONTENT, "overlap_ratio": None}
    existing = set(tokenize(existing_context))
    overlap = sum(1 for t in new_tokens if t in existing) / len(new_tokens)

    if overlap < OVERLAP_THRESHOLD:
        return {
            "is_new": True,
            "reason": f"Customer provided substantially new content "
                      f"({round((1 - overlap) * 100)}% new tokens)",
            "overlap_ratio": overlap,
        }
    return {
        "is_new": False,
        "reason": f"Message content overlaps {round(overlap * 100)}% with existing investigation",
        "overlap_ratio": overlap,
    }


def existing_context(investigation_id):
    """Ticket body plus phase 1 findings, the corpus new replies are compared to."""
    parts = []
    ticket = documents.read_json(investigation_id, TICKET_DATA_FILE)
    if isinstance(ticket, dict):
        parts.append(ticket.get("body") or ticket.get("description") or "")
    findings = documents.read_text(investigation_id, FINDINGS_FILE)
    if findings:
        parts.append(findings)
    return "\n".join(parts)


def pending_responses(investigation_id):
    return (
        TicketResponse.query.filter_by(
            investigation_id=investigation_id,
            actor_role="customer",
            triggered_reanalysis=False,
        )
        .order_by(TicketResponse.sequence_number.asc())
        .all()
    )


def _utcnow():
    return datetime.now(timezone.utc)


class DebounceScheduler:
    """
    Per-investigation quiet-period timers.

    Usage:
        scheduler = DebounceScheduler(app)
        scheduler.start_or_reset_timer(4711)   # on each new customer message
        scheduler.sweep_due()                  # evaluate timers past due
    """

    def __init__(self, app=None, clock=None):
        self.clock = clock or _utcnow
        self.debounce_minutes = DEFAULT_DEBOUNCE_MINUTES
        self.timers_enabled = False
        self._app = None
        self._threads: dict[int, threading.Timer] = {}
        self._threads_lock = threading.Lock()
        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        self._app = app
        self.debounce_minutes = app.config.get("DEBOUNCE_MINUTES", DEFAULT_DEBOUNCE_MINUTES)
        self.timers_enabled = app.config.get("DEBOUNCE_TIMERS_ENABLED", False)
        app.extensions["debounce"] = self

    @property
    def window(self):
        return timedelta(minutes=self.debounce_minutes)

    # ── Timer lifecycle ──────────────────────────────────────────────────

    def start_or_reset_timer(self, investigation_id):
        """
        Start the quiet period, or restart it if one is already running.

        Each call counts one more pending message. Flushes; the caller
        commits.
        """
        now = self.clock()
        timer = DebounceTimer.query.filter_by(investigation_id=investigation_id).first()
        if timer is None:
            timer = DebounceTimer(investigation_id=investigation_id, pending_messages=0)
            db.session.add(timer)
            logger.info("Debounce timer started (%d min)", self.debounce_minutes,
                        extra={"investigation_id": investigation_id})
        else:
            logger.info("Debounce timer reset (%d min)", self.debounce_minutes,
                        extra={"investigation_id": investigation_id})
        timer.started_at = now
        timer.due_at = now + self.window
        timer.pending_messages = (timer.pending_messages or 0) + 1
        db.session.flush()

        if self.timers_enabled:
            self._arm(investigation_id, self.window.total_seconds())
        return timer

    def cancel_timer(self, investigation_id):
        """Drop a pending timer. Returns True if one existed. Flushes."""
        self._disarm(investigation_id)
        timer = DebounceTimer.query.filter_by(investigation_id=investigation_id).first()
        if timer is None:
            return False
        db.session.delete(timer)
        db.session.flush()
        logger.info("Debounce timer cancelled", extra={"investigation_id": investigation_id})
        return True

    def has_active_timer(self, investigation_id):
        return DebounceTimer.query.filter_by(investigation_id=investigation_id).count() > 0

    def get_status(self, investigation_id):
        timer = DebounceTimer.query.filter_by(investigation_id=investigation_id).first()
        if timer is None:
            return {"active": False}
        remaining = ensure_utc(timer.due_at) - self.clock()
        return {
            "active": True,
            "debounce_minutes": self.debounce_minutes,
            "remaining_ms": max(0, int(remaining.total_seconds() * 1000)),
            "pending_messages": timer.pending_messages,
            "due_at": iso(timer.due_at),
        }

    # ── Evaluation ───────────────────────────────────────────────────────

    def due_investigation_ids(self):
        now = self.clock()
        return [
            t.investigation_id for t in DebounceTimer.query.order_by(DebounceTimer.due_at).all()
            if ensure_utc(t.due_at) <= now
        ]

    def sweep_due(self):
        """Evaluate every timer whose quiet period has passed."""
        return [self.evaluate(inv_id) for inv_id in self.due_investigation_ids()]

    def evaluate(self, investigation_id):
        """
        Evaluate the pending customer replies of one investigation and
        clear its timer. Commits.

        A second call with nothing pending is a no-op.

        Returns:
            {"investigation_id", "evaluated", "is_new", "reason", "messages"}
        """
        self._disarm(investigation_id)
        with investigation_lock(investigation_id):
            timer = DebounceTimer.query.filter_by(investigation_id=investigation_id).first()
            if timer is not None:
                db.session.delete(timer)

            investigation = db.session.get(Investigation, investigation_id)
            responses = pending_responses(investigation_id) if investigation else []
            if not responses:
                db.session.commit()
                logger.info("No untriaged messages, skipping",
                            extra={"investigation_id": investigation_id})
                return {"investigation_id": investigation_id, "evaluated": False,
                        "is_new": False, "reason": None, "messages": 0}

            result = evaluate_new_information(
                [r.content for r in responses], existing_context(investigation_id)
            )

            for response in responses:
                conversation.log_item(
                    investigation,
                    "customer_message",
                    response.content,
                    actor_name=response.actor_name or investigation.customer_name or "Customer",
                    actor_role="customer",
                    metadata={
                        "source": "ticket_followup",
                        "no_new_info": not result["is_new"],
                        "ticket_response_id": response.id,
                        "sequence_number": response.sequence_number,
                        "debounce_reason": result["reason"],
                    },
                )
                response.triggered_reanalysis = True

            if result["is_new"]:
                investigation.has_new_reply = True
                investigation.new_reply_summary = result["reason"]
            db.session.commit()

        logger.info(
            "Debounce evaluation: %s (%s)", "new information" if result["is_new"] else "no new information",
            result["reason"], extra={"investigation_id": investigation_id},
        )
        return {
            "investigation_id": investigation_id,
            "evaluated": True,
            "is_new": result["is_new"],
            "reason": result["reason"],
            "messages": len(responses),
        }

    # ── In-process timers ────────────────────────────────────────────────

    def rearm(self):
        """Arm in-process timers for every persisted timer (startup recovery)."""
        if not self.timers_enabled:
            return 0
        now = self.clock()
        timers = DebounceTimer.query.all()
        for timer in timers:
            delay = max(0.0, (ensure_utc(timer.due_at) - now).total_seconds())
            self._arm(timer.investigation_id, delay)
        if timers:
            logger.info("Re-armed %d debounce timer(s)", len(timers))
        return len(timers)

    def shutdown(self):
        with self._threads_lock:
            for t in self._threads.values():
                t.cancel()
            self._threads.clear()

    def _arm(self, investigation_id, delay):
        app = self._app or current_app._get_current_object()
        t = threading.Timer(delay, self._fire, args=(app, investigation_id))
        t.daemon = True
        with self._threads_lock:
            previous = self._threads.pop(investigation_id, None)
            if previous is not None:
                previous.cancel()
            self._threads[investigation_id] = t
        t.start()

    def _disarm(self, investigation_id):
        current = threading.current_thread()
        with self._threads_lock:
            t = self._threads.pop(investigation_id, None)
        if t is not None and t is not current:
            t.cancel()

    def _fire(self, app, investigation_id):
        with app.app_context():
            try:
                # The row may have been re-armed or cancelled since this fired.
                if investigation_id in self.due_investigation_ids():
                    self.evaluate(investigation_id)
            except Exception:
                logger.exception("Debounce evaluation failed",
                                  extra={"investigation_id": investigation_id})
                db.session.rollback()
            finally:
                db.session.remove()


def get_debounce_scheduler() -> DebounceScheduler:
    return current_app.extensions["debounce"]
