"""
tests/test_response_sync.py — ticket thread sync and the debounce hand-off.
"""

from triage.integrations.ticket_source import TicketSourceError
from triage.models.investigation import DebounceTimer, TicketResponse

TICKET_ID = 4711
BASE = f"/api/v1/investigations/{TICKET_ID}"

THREAD = (
    "From: Jane Doe\n"
    "Sent: 2025-01-06T09:00:00Z\n"
    "To: support@example.com\n"
    "The export now fails for the Azure connector as well, error 504 on every page.\n"
    "---\n"
    "From: Support Team\n"
    "Sent: 2025-01-06T10:00:00Z\n"
    "We are looking into this and will update you shortly.\n"
)


def _sync(client, body=None):
    payload = {} if body is None else {"body": body}
    res = client.post(f"{BASE}/sync-responses", json=payload)
    assert res.status_code == 200
    return res.get_json()


class TestSyncResponses:
    def test_new_messages_stored(self, client, investigation):
        result = _sync(client, THREAD)
        assert result["new_count"] == 2
        assert result["new_customer_messages"] == 1
        assert result["new_agent_messages"] == 1
        assert result["total_count"] == 2
        assert result["debounce"]["active"] is True
        assert result["debounce"]["pending_messages"] == 1

        items = client.get(f"{BASE}/responses").get_json()["items"]
        assert [r["sequence_number"] for r in items] == [1, 2]
        assert items[0]["actor_role"] == "customer"
        assert items[0]["actor_name"] == "Jane Doe"
        assert items[1]["actor_role"] == "agent"

    def test_resync_finds_nothing_new(self, client, investigation):
        _sync(client, THREAD)
        result = _sync(client, THREAD)
        assert result["new_count"] == 0
        assert result["total_count"] == 2
        assert TicketResponse.query.count() == 2

    def test_agent_reply_logged_immediately(self, client, investigation):
        _sync(client, THREAD)
        items = client.get(f"{BASE}/conversation").get_json()["items"]
        agent_items = [i for i in items if i["type"] == "agent_message"]
        assert len(agent_items) == 1
        assert agent_items[0]["actor_name"] == "Support Team"
        assert agent_items[0]["metadata"]["source"] == "ticket_followup"
        # the customer reply waits for the debounce evaluation
        followups = [i for i in items if i["type"] == "customer_message"
                     and (i["metadata"] or {}).get("source") == "ticket_followup"]
        assert followups == []

    def test_body_must_be_string(self, client, investigation):
        res = client.post(f"{BASE}/sync-responses", json={"body": ["not", "text"]})
        assert res.status_code == 400

    def test_unknown_investigation(self, client):
        assert client.post(f"{BASE}/sync-responses", json={"body": THREAD}).status_code == 404
        assert client.get(f"{BASE}/responses").status_code == 404


class TestFetchedThread:
    def test_thread_fetched_when_body_omitted(self, client, investigation, ticket_source):
        ticket_source.thread = THREAD
        result = _sync(client)
        assert result["new_count"] == 2
        assert ticket_source.calls == [TICKET_ID, TICKET_ID]

    def test_stored_ticket_used_when_fetch_fails(self, client, investigation, ticket_source):
        ticket_source.fail_with = TicketSourceError("ticket source unavailable")
        result = _sync(client)
        assert result["new_count"] == 1
        response = client.get(f"{BASE}/responses").get_json()["items"][0]
        assert "Okta connector stopped syncing" in response["content"]
        assert response["actor_name"] == "Acme Corp"


class TestDebounceHandOff:
    def test_sweep_job_evaluates_after_window(self, client, investigation, clock):
        _sync(client, THREAD)
        clock.advance(minutes=20)

        res = client.post("/api/v1/jobs/debounce_sweep/run")
        assert res.status_code == 200
        body = res.get_json()
        assert body["status"] == "success"
        assert body["result"]["evaluated"] == 1
        assert body["result"]["investigations"] == [TICKET_ID]

        assert DebounceTimer.query.count() == 0
        assert client.get(f"{BASE}/debounce-status").get_json() == {"active": False}
        items = client.get(f"{BASE}/conversation").get_json()["items"]
        followup = [i for i in items if i["type"] == "customer_message"
                    and (i["metadata"] or {}).get("source") == "ticket_followup"]
        assert len(followup) == 1
        assert "Azure connector" in followup[0]["content"]

    def test_sweep_before_window_does_nothing(self, client, investigation, clock):
        _sync(client, THREAD)
        clock.advance(minutes=10)
        body = client.post("/api/v1/jobs/debounce_sweep/run").get_json()
        assert body["result"]["evaluated"] == 0
        assert DebounceTimer.query.count() == 1
