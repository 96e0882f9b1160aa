"""
tests/test_runs.py — run ledger and hard reset.

Covers: archive before truncation, run supersession, run-scoped
conversation, timer cancellation, late results of a superseded run.
"""

import os

from triage.models import db
from triage.models.investigation import CP1, InvestigationRun, PhaseTask
from triage.services.debounce import get_debounce_scheduler
from triage.services.phases import execute_task

TICKET_ID = 4711
BASE = f"/api/v1/investigations/{TICKET_ID}"


def _hard_reset(client):
    res = client.post(f"{BASE}/hard-reset")
    assert res.status_code == 200
    return res.get_json()


class TestHardReset:
    def test_reset_opens_new_run(self, client, investigation, ticket_source):
        client.post(f"{BASE}/checkpoint", json={"checkpoint": CP1, "action": "approve"})

        body = _hard_reset(client)
        assert body["previous_run"] == 1
        assert body["new_run"] == 2
        assert body["task"]["phase"] == "phase0"
        inv = body["investigation"]
        assert inv["current_run_number"] == 2
        assert inv["current_checkpoint"] == CP1
        assert inv["status"] == "waiting"
        assert inv["customer_name"] == "Acme Corp"
        assert inv["current_version_id"] is None
        # ticket data was cleared, so phase 0 fetched again
        assert len(ticket_source.calls) == 2

    def test_archive_holds_previous_documents(self, client, investigation, app):
        client.post(f"{BASE}/checkpoint", json={"checkpoint": CP1, "action": "approve"})
        body = _hard_reset(client)

        archive = os.path.join(app.config["INVESTIGATIONS_DIR"], str(TICKET_ID), "run-1")
        assert body["archive"]["archive_dir"] == archive
        assert "phase1-findings.md" in body["archive"]["archived"]
        with open(os.path.join(archive, "phase1-findings.md"), encoding="utf-8") as fh:
            assert "Related Issues Found" in fh.read()

        files = {f["name"]: f for f in client.get(f"{BASE}/files").get_json()["files"]}
        assert files["phase1-findings.md"]["exists"] is False
        assert files["ticket-data.json"]["exists"] is True

    def test_exactly_one_live_run(self, client, investigation):
        _hard_reset(client)
        _hard_reset(client)
        runs = client.get(f"{BASE}/runs").get_json()["items"]
        assert [r["run_number"] for r in runs] == [1, 2, 3]
        assert [r["status"] for r in runs] == ["superseded", "superseded", "running"]
        assert runs[2]["trigger_type"] == "hard_reset"

    def test_conversation_scoped_by_run(self, client, investigation):
        _hard_reset(client)
        run1 = client.get(f"{BASE}/runs/1/conversation").get_json()["items"]
        run2 = client.get(f"{BASE}/runs/2/conversation").get_json()["items"]
        assert run1 and all(i["run_number"] == 1 for i in run1)
        assert run2[0]["type"] == "reset_marker"
        assert run2[0]["metadata"] == {"trigger": "hard_reset", "previous_run": 1, "new_run": 2}
        assert client.get(f"{BASE}/runs/9/conversation").status_code == 404

    def test_versions_survive_reset(self, client, investigation):
        client.post(f"{BASE}/checkpoint", json={"checkpoint": CP1, "action": "abort"})
        _hard_reset(client)
        versions = client.get(f"{BASE}/versions").get_json()["items"]
        assert len(versions) == 1
        assert versions[0]["run_number"] == 1

    def test_reset_cancels_debounce_timer(self, client, investigation):
        get_debounce_scheduler().start_or_reset_timer(TICKET_ID)
        db.session.commit()
        _hard_reset(client)
        assert client.get(f"{BASE}/debounce-status").get_json() == {"active": False}

    def test_reset_unknown_investigation(self, client):
        assert client.post(f"{BASE}/hard-reset").status_code == 404


def test_superseded_task_discards_results(client, investigation, agent, app):
    _hard_reset(client)
    stale = PhaseTask(investigation_id=TICKET_ID, run_number=1, phase="phase1", status="queued")
    db.session.add(stale)
    db.session.commit()

    execute_task(stale.id)

    assert db.session.get(PhaseTask, stale.id).status == "discarded"
    assert agent.calls == []
    path = os.path.join(app.config["INVESTIGATIONS_DIR"], str(TICKET_ID), "phase1-findings.md")
    assert not os.path.exists(path) or os.path.getsize(path) == 0
    run = InvestigationRun.query.filter_by(investigation_id=TICKET_ID, run_number=2).first()
    assert run.current_checkpoint == CP1
