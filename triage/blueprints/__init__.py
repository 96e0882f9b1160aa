"""
Support Triage Orchestrator
Blueprint registry.
"""

import logging

from flask import request

from triage.core.exceptions import (
    ConflictError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from triage.models import db
from triage.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def paginate_query(query, default_limit=200, max_limit=1000):
    """Apply limit/offset pagination to a SQLAlchemy query.

    Query params:
        limit  — max items (default 200, capped at max_limit)
        offset — starting position (default 0)

    Returns:
        (items_list, total_count)
    """
    total = query.count()
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    items = query.limit(limit).offset(offset).all()
    return items, total


def register_service_errors(bp):
    """Map service exceptions to the standard JSON error body.

    Every handler rolls the session back first, so a failed operation
    leaves no partial snapshot, conversation item or state change behind.
    """

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error):
        db.session.rollback()
        return api_error(E.NOT_FOUND, str(error))

    @bp.errorhandler(ValidationError)
    def _handle_validation(error):
        db.session.rollback()
        return api_error(E.VALIDATION_RULE, str(error), details=error.details)

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error):
        db.session.rollback()
        return api_error(E.CONFLICT_DUPLICATE, str(error),
                         details={"field": error.field, "value": error.value})

    @bp.errorhandler(StateConflictError)
    def _handle_state_conflict(error):
        db.session.rollback()
        return api_error(E.CONFLICT_STATE, str(error), details=error.details)

    @bp.errorhandler(OSError)
    def _handle_io(error):
        db.session.rollback()
        logger.exception("Document I/O failed endpoint=%s", request.endpoint)
        return api_error(E.INTERNAL, f"Document I/O failed: {error}")
