"""
tests/test_debounce.py — new-information detection and the debounce timer.

Covers: noise / short / indicator / overlap decisions, timer start + reset,
due sweep with an injected clock, evaluation idempotence, no automatic run.
"""

from triage.models import db
from triage.models.investigation import (
    ConversationItem,
    DebounceTimer,
    Investigation,
    PhaseTask,
    TicketResponse,
)
from triage.services import debounce
from triage.services.debounce import evaluate_new_information, get_debounce_scheduler

TICKET_ID = 4711

EXISTING = "alpha bravo charlie delta echo foxtrot golf hotel india juliet"


# ═════════════════════════════════════════════════════════════════════════
# evaluate_new_information
# ═════════════════════════════════════════════════════════════════════════


class TestEvaluateNewInformation:
    def test_acknowledgment_is_noise(self):
        result = evaluate_new_information("thanks!", EXISTING)
        assert result["is_new"] is False
        assert result["reason"] == debounce.REASON_ACKNOWLEDGMENT

    def test_follow_up_ping_is_noise(self):
        assert evaluate_new_information("Any update on this ticket?", EXISTING)["is_new"] is False
        assert evaluate_new_information("ok, waiting for your reply", EXISTING)["is_new"] is False

    def test_word_starting_with_ok_is_not_noise(self):
        result = evaluate_new_information("okta kilo lima mike november oscar papa", EXISTING)
        assert result["reason"] != debounce.REASON_ACKNOWLEDGMENT

    def test_too_short(self):
        result = evaluate_new_information("see above", EXISTING)
        assert result == {"is_new": False, "reason": debounce.REASON_TOO_SHORT,
                          "overlap_ratio": None}

    def test_indicator_overrides_overlap(self):
        result = evaluate_new_information(
            "Here is the stack trace: alpha bravo charlie delta", EXISTING
        )
        assert result["is_new"] is True
        assert result["reason"] == debounce.REASON_INDICATOR

    def test_high_overlap_is_not_new(self):
        result = evaluate_new_information(
            "alpha bravo charlie delta echo foxtrot golf hotel kilo lima", EXISTING
        )
        assert result["is_new"] is False
        assert result["overlap_ratio"] == 0.8
        assert "80%" in result["reason"]

    def test_low_overlap_is_new(self):
        result = evaluate_new_information(
            "alpha bravo charlie delta echo foxtrot kilo lima mike november", EXISTING
        )
        assert result["is_new"] is True
        assert result["overlap_ratio"] == 0.6
        assert "40% new tokens" in result["reason"]

    def test_only_stopwords(self):
        result = evaluate_new_information("what about this and that?", EXISTING)
        assert result["is_new"] is False
        assert result["reason"] == debounce.REASON_NO_CONTENT

    def test_batch_is_noise_only_when_every_message_is(self):
        result = evaluate_new_information(["thanks!", "Any update?"], EXISTING)
        assert result["reason"] == debounce.REASON_ACKNOWLEDGMENT

        result = evaluate_new_information(
            ["Ok.", "Attached the stack trace from the failing sync run."], EXISTING
        )
        assert result["is_new"] is True
        assert result["reason"] == debounce.REASON_INDICATOR


def test_tokenize_drops_short_words_and_stopwords():
    assert debounce.tokenize("The Okta sync is DOWN, ok?") == ["okta", "sync", "down"]


# ═════════════════════════════════════════════════════════════════════════
# Scheduler
# ═════════════════════════════════════════════════════════════════════════


def _add_response(content, seq, role="customer"):
    response = TicketResponse(
        investigation_id=TICKET_ID,
        sequence_number=seq,
        actor_role=role,
        actor_name="Jane Doe",
        content=content,
        triggered_reanalysis=role != "customer",
    )
    db.session.add(response)
    db.session.commit()
    return response


class TestDebounceScheduler:
    def test_start_and_reset_timer(self, investigation, clock):
        scheduler = get_debounce_scheduler()
        scheduler.start_or_reset_timer(TICKET_ID)
        clock.advance(minutes=5)
        timer = scheduler.start_or_reset_timer(TICKET_ID)
        db.session.commit()

        assert DebounceTimer.query.count() == 1
        assert timer.pending_messages == 2
        status = scheduler.get_status(TICKET_ID)
        assert status["active"] is True
        assert status["pending_messages"] == 2
        assert status["remaining_ms"] == 20 * 60 * 1000

    def test_not_due_before_window(self, investigation, clock):
        scheduler = get_debounce_scheduler()
        scheduler.start_or_reset_timer(TICKET_ID)
        db.session.commit()
        clock.advance(minutes=19)
        assert scheduler.due_investigation_ids() == []
        assert scheduler.sweep_due() == []
        clock.advance(minutes=1)
        assert scheduler.due_investigation_ids() == [TICKET_ID]

    def test_cancel_timer(self, investigation):
        scheduler = get_debounce_scheduler()
        scheduler.start_or_reset_timer(TICKET_ID)
        assert scheduler.cancel_timer(TICKET_ID) is True
        assert scheduler.cancel_timer(TICKET_ID) is False
        assert scheduler.get_status(TICKET_ID) == {"active": False}

    def test_acknowledgment_logged_without_flag(self, investigation, clock):
        scheduler = get_debounce_scheduler()
        _add_response("thanks!", 1)
        scheduler.start_or_reset_timer(TICKET_ID)
        db.session.commit()
        clock.advance(minutes=20)

        results = scheduler.sweep_due()
        assert len(results) == 1
        assert results[0]["evaluated"] is True
        assert results[0]["is_new"] is False

        inv = db.session.get(Investigation, TICKET_ID)
        assert inv.has_new_reply is False
        item = ConversationItem.query.filter_by(
            investigation_id=TICKET_ID, item_type="customer_message"
        ).order_by(ConversationItem.id.desc()).first()
        assert item.content == "thanks!"
        assert item.item_metadata["no_new_info"] is True
        assert item.item_metadata["source"] == "ticket_followup"
        assert DebounceTimer.query.count() == 0

    def test_new_information_flags_without_new_run(self, investigation, clock):
        scheduler = get_debounce_scheduler()
        _add_response("Attached the stack trace from the failing sync job.", 1)
        scheduler.start_or_reset_timer(TICKET_ID)
        db.session.commit()
        tasks_before = PhaseTask.query.count()
        clock.advance(minutes=21)

        result = scheduler.evaluate(TICKET_ID)
        assert result["is_new"] is True

        inv = db.session.get(Investigation, TICKET_ID)
        assert inv.has_new_reply is True
        assert inv.new_reply_summary == debounce.REASON_INDICATOR
        assert inv.current_run_number == 1
        assert PhaseTask.query.count() == tasks_before
        assert TicketResponse.query.filter_by(triggered_reanalysis=False).count() == 0

    def test_messages_evaluated_as_batch(self, investigation, clock):
        scheduler = get_debounce_scheduler()
        _add_response("The sync still fails.", 1)
        _add_response("Forgot to mention: it started after the upgrade.", 2)
        scheduler.start_or_reset_timer(TICKET_ID)
        scheduler.start_or_reset_timer(TICKET_ID)
        db.session.commit()
        clock.advance(minutes=20)

        result = scheduler.evaluate(TICKET_ID)
        assert result["messages"] == 2
        assert result["is_new"] is True
        items = ConversationItem.query.filter_by(
            investigation_id=TICKET_ID, item_type="customer_message"
        ).order_by(ConversationItem.id).all()
        followups = [i for i in items
                     if (i.item_metadata or {}).get("source") == "ticket_followup"]
        assert [i.item_metadata["sequence_number"] for i in followups] == [1, 2]

    def test_acknowledgment_does_not_hide_later_evidence(self, investigation, clock):
        scheduler = get_debounce_scheduler()
        _add_response("Ok.", 1)
        _add_response("Attached the stack trace from the failing sync run.", 2)
        scheduler.start_or_reset_timer(TICKET_ID)
        db.session.commit()
        clock.advance(minutes=20)

        result = scheduler.evaluate(TICKET_ID)
        assert result["is_new"] is True
        assert db.session.get(Investigation, TICKET_ID).has_new_reply is True

    def test_evaluate_is_idempotent(self, investigation, clock):
        scheduler = get_debounce_scheduler()
        _add_response("thanks!", 1)
        scheduler.start_or_reset_timer(TICKET_ID)
        db.session.commit()
        clock.advance(minutes=20)

        first = scheduler.evaluate(TICKET_ID)
        count = ConversationItem.query.count()
        second = scheduler.evaluate(TICKET_ID)

        assert first["evaluated"] is True
        assert second["evaluated"] is False
        assert ConversationItem.query.count() == count

    def test_agent_responses_are_not_pending(self, investigation):
        _add_response("We are on it.", 1, role="agent")
        assert debounce.pending_responses(TICKET_ID) == []
