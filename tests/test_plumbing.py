"""
tests/test_plumbing.py — error envelope and log formatters.
"""

import json
import logging

from triage.middleware.logging_config import JSONFormatter, ReadableFormatter
from triage.utils.errors import E, api_error


def _record(msg="Phase complete", **extra):
    record = logging.LogRecord("triage.services.phases", logging.INFO, __file__, 1, msg, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


# ═════════════════════════════════════════════════════════════════════════
# api_error
# ═════════════════════════════════════════════════════════════════════════


class TestApiError:
    def test_basic_error(self, app):
        with app.test_request_context():
            resp, status = api_error(E.NOT_FOUND, "Investigation not found")
            data = resp.get_json()
        assert status == 404
        assert data == {"error": "Investigation not found", "code": "ERR_NOT_FOUND"}

    def test_error_with_details(self, app):
        with app.test_request_context():
            resp, status = api_error(E.CONFLICT_STATE, "Phase already queued",
                                     details={"task": {"phase": "phase1"}})
        assert status == 409
        assert resp.get_json()["details"] == {"task": {"phase": "phase1"}}

    def test_rule_violation_is_422(self, app):
        with app.test_request_context():
            _, status = api_error(E.VALIDATION_RULE, "Invalid checkpoint")
        assert status == 422

    def test_unknown_code_defaults_to_400(self, app):
        with app.test_request_context():
            _, status = api_error("ERR_SOMETHING_ELSE", "nope")
        assert status == 400


# ═════════════════════════════════════════════════════════════════════════
# Formatters
# ═════════════════════════════════════════════════════════════════════════


class TestFormatters:
    def test_json_line_carries_investigation_context(self):
        line = JSONFormatter().format(_record(investigation_id=4711, phase="phase1", run_number=2))
        entry = json.loads(line)
        assert entry["message"] == "Phase complete"
        assert entry["level"] == "INFO"
        assert entry["investigation_id"] == 4711
        assert entry["phase"] == "phase1"
        assert entry["run_number"] == 2
        assert "checkpoint" not in entry

    def test_readable_line_tags_investigation_and_phase(self):
        line = ReadableFormatter().format(_record(investigation_id=4711, phase="phase1",
                                                  duration_ms=35.2))
        assert "triage.services.phases #4711 [phase1]: Phase complete" in line
        assert line.endswith("[35ms]")

    def test_readable_line_without_context(self):
        line = ReadableFormatter().format(_record("Logging configured"))
        assert line.endswith("triage.services.phases: Logging configured")
