"""
tests/test_versions.py — snapshot store: numbering, diff, rollback, refocus.
"""

from triage.models import db
from triage.models.investigation import (
    CP1,
    CP2,
    TRACKED_FIELDS,
    Investigation,
    InvestigationVersion,
)
from triage.services.snapshot_service import SnapshotService, compute_diff_summary

TICKET_ID = 4711
BASE = f"/api/v1/investigations/{TICKET_ID}"


def _approve(client, checkpoint):
    res = client.post(f"{BASE}/checkpoint", json={"checkpoint": checkpoint, "action": "approve"})
    assert res.status_code == 200
    return res.get_json()


def _restore(client, version_id, mode):
    return client.post(f"{BASE}/versions/restore", json={"version_id": version_id, "mode": mode})


def _files(client):
    return {f["name"]: f for f in client.get(f"{BASE}/files").get_json()["files"]}


class TestSnapshotNumbering:
    def test_version_numbers_are_monotonic(self, investigation):
        inv = db.session.get(Investigation, TICKET_ID)
        numbers = [SnapshotService.create(inv, CP1, f"manual {i}").version_number for i in range(3)]
        db.session.commit()
        assert numbers == [1, 2, 3]
        assert inv.current_version_id == InvestigationVersion.query.filter_by(version_number=3).first().id

    def test_first_snapshot_summary(self):
        assert compute_diff_summary(None, {}, {}) == "Initial snapshot"

    def test_diff_summary_against_previous(self, client, investigation):
        _approve(client, CP1)
        _approve(client, CP2)
        v2 = InvestigationVersion.query.filter_by(version_number=2).first()
        assert "current_checkpoint" in v2.diff_summary
        assert "phase1-findings.md" in v2.diff_summary

    def test_list_versions_by_run(self, client, investigation):
        _approve(client, CP1)
        assert client.get(f"{BASE}/versions?run=1").get_json()["total"] == 1
        assert client.get(f"{BASE}/versions?run=2").get_json()["total"] == 0
        assert client.get(f"{BASE}/versions?run=abc").status_code == 400

    def test_get_version_with_content(self, client, investigation):
        version_id = _approve(client, CP1)["version"]["id"]
        body = client.get(f"{BASE}/versions/{version_id}").get_json()
        assert body["field_snapshot"]["customer_name"] == "Acme Corp"
        assert "ticket-data.json" in body["file_snapshot"]


class TestDiff:
    def test_diff_fields_and_files(self, client, investigation):
        v1 = _approve(client, CP1)["version"]["id"]
        v2 = _approve(client, CP2)["version"]["id"]
        res = client.get(f"{BASE}/versions/diff?a={v1}&b={v2}")
        assert res.status_code == 200
        body = res.get_json()
        assert {"field": "current_checkpoint", "old_value": CP1, "new_value": CP2} in body["changed_fields"]
        assert body["changed_files"] == ["phase1-findings.md", "checkpoint-actions.json"]

    def test_diff_requires_both_ids(self, client, investigation):
        assert client.get(f"{BASE}/versions/diff?a=1").status_code == 400

    def test_diff_unknown_version(self, client, investigation):
        v1 = _approve(client, CP1)["version"]["id"]
        assert client.get(f"{BASE}/versions/diff?a={v1}&b=999").status_code == 404


class TestRestore:
    def test_rollback_restores_fields_and_files(self, client, investigation):
        v1 = _approve(client, CP1)["version"]["id"]
        assert client.get(f"{BASE}").get_json()["current_checkpoint"] == CP2

        res = _restore(client, v1, "rollback")
        assert res.status_code == 200
        body = res.get_json()
        assert body["new_version_number"] == 2
        assert body["message"] == "Rolled back to version 1"
        assert body["investigation"]["current_checkpoint"] == CP1
        assert body["investigation"]["status"] == "waiting"

        files = {f["name"]: f for f in client.get(f"{BASE}/files").get_json()["files"]}
        assert files["phase1-findings.md"]["exists"] is False

        pre_restore = db.session.get(InvestigationVersion, body["new_version_id"])
        assert pre_restore.label == "Restored to v1"
        assert pre_restore.file_snapshot["phase1-findings.md"] is not None

    def test_rollback_round_trip(self, client, investigation):
        v1 = _approve(client, CP1)["version"]["id"]
        client.put(BASE, json={"priority": "P1", "classification": "product_bug"})
        before = client.get(BASE).get_json()
        findings = _files(client)["phase1-findings.md"]["content"]
        pre_restore_id = _restore(client, v1, "rollback").get_json()["new_version_id"]

        client.put(BASE, json={"priority": "P4", "classification": "documentation"})
        _restore(client, pre_restore_id, "rollback")

        after = client.get(BASE).get_json()
        assert {name: after[name] for name in TRACKED_FIELDS} == \
            {name: before[name] for name in TRACKED_FIELDS}
        assert after["priority"] == "P1"
        assert after["current_checkpoint"] == CP2
        assert _files(client)["phase1-findings.md"]["content"] == findings

    def test_refocus_sets_anchor_and_fades_later_items(self, client, investigation):
        v1 = _approve(client, CP1)["version"]["id"]
        res = _restore(client, v1, "refocus")
        body = res.get_json()
        assert body["message"] == "Re-focused to version 1"
        assert body["investigation"]["anchor_version_id"] == v1
        assert body["investigation"]["current_checkpoint"] == CP2

        items = client.get(f"{BASE}/conversation").get_json()["items"]
        first_customer = next(i for i in items if i["type"] == "customer_message")
        assert first_customer["is_faded"] is False
        assert items[-1]["type"] == "reset_marker"
        assert items[-1]["is_faded"] is True
        assert items[-1]["metadata"]["mode"] == "refocus"

    def test_history_is_never_deleted(self, client, investigation):
        v1 = _approve(client, CP1)["version"]["id"]
        _restore(client, v1, "rollback")
        _restore(client, v1, "refocus")
        versions = client.get(f"{BASE}/versions").get_json()["items"]
        assert [v["version_number"] for v in versions] == [1, 2, 3]

    def test_invalid_mode(self, client, investigation):
        v1 = _approve(client, CP1)["version"]["id"]
        res = _restore(client, v1, "rewind")
        assert res.status_code == 422
        assert InvestigationVersion.query.count() == 1

    def test_missing_fields(self, client, investigation):
        assert client.post(f"{BASE}/versions/restore", json={"mode": "rollback"}).status_code == 400

    def test_version_of_other_investigation(self, client, investigation):
        _approve(client, CP1)
        client.post("/api/v1/investigations", json={"ticket_id": 5000})
        other = client.post("/api/v1/investigations/5000/checkpoint",
                            json={"checkpoint": CP1, "action": "abort"}).get_json()
        res = _restore(client, other["version"]["id"], "rollback")
        assert res.status_code == 404
