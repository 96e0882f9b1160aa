"""JSON error bodies shared by every blueprint.

    from triage.utils.errors import api_error, E

    return api_error(E.VALIDATION_REQUIRED, "ticket_id is required")
    return api_error(E.CONFLICT_STATE, str(exc), details={"task": task.to_dict()})

Body shape: ``{"error": <message>, "code": <E.*>, "details": {...}}``;
``details`` is omitted when empty.
"""

from __future__ import annotations

from flask import jsonify


class E:
    """Error codes returned in the ``code`` field."""

    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"   # missing body field
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"     # unparseable value
    VALIDATION_RULE = "ERR_VALIDATION_RULE"           # bad enum, checkpoint, mode
    NOT_FOUND = "ERR_NOT_FOUND"
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"     # ticket already investigated
    CONFLICT_STATE = "ERR_CONFLICT_STATE"             # phase task in flight
    RATE_LIMITED = "ERR_RATE_LIMITED"
    INTERNAL = "ERR_INTERNAL"


_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.VALIDATION_RULE: 422,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_STATE: 409,
    E.RATE_LIMITED: 429,
    E.INTERNAL: 500,
}


def api_error(code: str, message: str, *, details: dict | None = None):
    """Return ``(response, status)`` for ``code``; unknown codes map to 400."""
    body: dict = {"error": message, "code": code}
    if details:
        body["details"] = details
    return jsonify(body), _STATUS.get(code, 400)
