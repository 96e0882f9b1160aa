"""
tests/test_api_investigations.py — investigation CRUD, documents, health, error bodies.
"""

import pytest

from triage.core.exceptions import AgentTimeoutError

TICKET_ID = 4711
BASE = f"/api/v1/investigations/{TICKET_ID}"


# ═════════════════════════════════════════════════════════════════════════
# Create
# ═════════════════════════════════════════════════════════════════════════


class TestCreate:
    def test_create_runs_phase_zero(self, investigation, ticket_source):
        assert investigation["id"] == TICKET_ID
        assert investigation["ticket_title"] == "Okta sync failing"
        assert investigation["product_area"] == "Connectors"
        assert investigation["connector_name"] == "okta"
        assert investigation["priority"] == "P2"
        assert investigation["has_new_reply"] is False
        assert investigation["debounce"] == {"active": False}
        assert ticket_source.calls == [TICKET_ID]

    def test_ticket_id_as_string(self, client):
        res = client.post("/api/v1/investigations", json={"ticket_id": "5000"})
        assert res.status_code == 201
        assert res.get_json()["id"] == 5000

    @pytest.mark.parametrize("payload, status, code", [
        ({}, 400, "ERR_VALIDATION_REQUIRED"),
        ({"ticket_id": "abc"}, 400, "ERR_VALIDATION_INVALID"),
        ({"ticket_id": -5}, 422, "ERR_VALIDATION_RULE"),
        ({"ticket_id": 0}, 422, "ERR_VALIDATION_RULE"),
    ])
    def test_create_rejects_bad_ticket_id(self, client, payload, status, code):
        res = client.post("/api/v1/investigations", json=payload)
        assert res.status_code == status
        body = res.get_json()
        assert body["code"] == code
        assert body["error"]

    def test_duplicate_ticket(self, client, investigation):
        res = client.post("/api/v1/investigations", json={"ticket_id": TICKET_ID})
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_DUPLICATE"


# ═════════════════════════════════════════════════════════════════════════
# Read
# ═════════════════════════════════════════════════════════════════════════


class TestRead:
    def test_get_detail(self, client, investigation):
        body = client.get(BASE).get_json()
        assert body["current_run"]["trigger_type"] == "manual"
        assert body["active_task"] is None

    def test_get_unknown(self, client):
        res = client.get(BASE)
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_list_filtered_by_status(self, client, investigation):
        client.post("/api/v1/investigations", json={"ticket_id": 5000})
        client.post("/api/v1/investigations/5000/checkpoint",
                    json={"checkpoint": "checkpoint_1_post_classification", "action": "abort"})

        everything = client.get("/api/v1/investigations").get_json()
        assert everything["total"] == 2
        paused = client.get("/api/v1/investigations?status=paused").get_json()
        assert [i["id"] for i in paused["items"]] == [5000]

    def test_list_rejects_unknown_status(self, client):
        res = client.get("/api/v1/investigations?status=archived")
        assert res.status_code == 422

    def test_stats(self, client, investigation):
        body = client.get("/api/v1/investigations/stats").get_json()
        assert body["total"] == 1
        assert body["by_status"]["waiting"] == 1
        assert body["by_status"]["error"] == 0
        assert body["new_replies"] == 0


# ═════════════════════════════════════════════════════════════════════════
# Update
# ═════════════════════════════════════════════════════════════════════════


class TestUpdate:
    def test_edit_priority(self, client, investigation):
        res = client.put(BASE, json={"priority": "P1", "connector_name": ""})
        assert res.status_code == 200
        body = res.get_json()
        assert body["priority"] == "P1"
        assert body["connector_name"] is None

    def test_invalid_enum_changes_nothing(self, client, investigation):
        res = client.put(BASE, json={"priority": "P9", "customer_name": "Other"})
        assert res.status_code == 422
        assert "priority" in res.get_json()["details"]
        assert client.get(BASE).get_json()["customer_name"] == "Acme Corp"

    def test_status_is_not_editable(self, client, investigation):
        res = client.put(BASE, json={"status": "complete"})
        assert res.status_code == 422
        assert res.get_json()["details"] == {"fields": ["status"]}

    def test_body_must_be_object(self, client, investigation):
        assert client.put(BASE, json=["priority", "P1"]).status_code == 400


# ═════════════════════════════════════════════════════════════════════════
# Documents & conversation
# ═════════════════════════════════════════════════════════════════════════


class TestDocuments:
    def test_files_listing(self, client, investigation):
        files = {f["name"]: f for f in client.get(f"{BASE}/files").get_json()["files"]}
        assert files["ticket-data.json"]["exists"] is True
        assert files["ticket-data.json"]["size"] > 0
        assert files["summary.md"] == {"name": "summary.md", "exists": False, "content": None,
                                       "size": 0, "modified_at": None}

    def test_activity_contains_phase_zero(self, client, investigation):
        body = client.get(f"{BASE}/activity").get_json()
        assert body["total"] == len(body["events"])
        assert any(e["type"] == "start" and e["phase"] == "phase0" for e in body["events"])

    def test_conversation_since(self, client, investigation):
        res = client.get(f"{BASE}/conversation?since=2999-01-01T00:00:00Z")
        assert res.status_code == 200
        assert res.get_json()["total"] == 0

    def test_conversation_bad_since(self, client, investigation):
        res = client.get(f"{BASE}/conversation?since=yesterday")
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"


# ═════════════════════════════════════════════════════════════════════════
# Health & plumbing
# ═════════════════════════════════════════════════════════════════════════


class TestHealth:
    def test_health_summary(self, client, investigation):
        body = client.get("/api/v1/health").get_json()
        assert body == {"status": "ok", "investigations": 1}

    def test_ready(self, client):
        assert client.get("/api/v1/health/ready").status_code == 200

    def test_live(self, client, investigation):
        res = client.get("/api/v1/health/live")
        assert res.status_code == 200
        checks = res.get_json()["checks"]
        assert checks["database"]["status"] == "ok"
        assert checks["documents"]["status"] == "ok"
        assert checks["agent"]["command"] == "fake-agent"
        assert checks["app"]["phase_mode"] == "inline"

    def test_agent_authenticated(self, client, agent):
        body = client.get("/api/v1/health/agent").get_json()
        assert body["authenticated"] is True
        assert agent.calls == ["Respond with OK"]

    def test_agent_login_expired(self, client, agent, auth_failure):
        agent.fail_with = auth_failure
        res = client.get("/api/v1/health/agent")
        assert res.status_code == 200
        assert res.get_json() == {"authenticated": False, "message": agent.login_hint}

    def test_agent_other_failure(self, client, agent):
        agent.fail_with = AgentTimeoutError(10)
        body = client.get("/api/v1/health/agent").get_json()
        assert body["authenticated"] is False
        assert body["error"] == "Agent call timed out after 10s"


def test_request_id_echoed(client):
    res = client.get("/api/v1/health/ready", headers={"X-Request-ID": "req-123"})
    assert res.headers["X-Request-ID"] == "req-123"
    assert "X-Request-Duration-Ms" in res.headers


def test_unknown_api_route_is_json(client):
    res = client.get("/api/v1/nothing-here")
    assert res.status_code == 404
    assert res.get_json()["code"] == "ERR_NOT_FOUND"
