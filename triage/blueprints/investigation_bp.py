"""
Investigation Blueprint — operator surface consumed by the dashboard.

Endpoints:
  Investigation:  GET/POST /investigations, GET /investigations/stats
                  GET/PUT  /investigations/<id>
                  GET      /investigations/<id>/files
                  GET      /investigations/<id>/activity?since=
                  GET      /investigations/<id>/conversation?since=
  Workflow:       POST /investigations/<id>/checkpoint
                  POST /investigations/<id>/retry
                  POST /investigations/<id>/hard-reset
                  GET  /investigations/<id>/tasks
  Runs:           GET  /investigations/<id>/runs
                  GET  /investigations/<id>/runs/<n>/conversation?since=
  Versions:       GET  /investigations/<id>/versions?run=
                  GET  /investigations/<id>/versions/diff?a=&b=
                  GET  /investigations/<id>/versions/<version_id>
                  POST /investigations/<id>/versions/restore
  Replies:        POST /investigations/<id>/sync-responses
                  GET  /investigations/<id>/responses
                  GET  /investigations/<id>/debounce-status

Blueprints parse and validate input (400 on malformed requests), call one
service function and return JSON. Services own every commit.
"""

import logging

from flask import Blueprint, jsonify, request

from triage.blueprints import paginate_query, register_service_errors
from triage.services import conversation
from triage.services import investigation_service as inv_svc
from triage.services import run_service, response_sync
from triage.services.checkpoint_service import apply_checkpoint_action
from triage.services.debounce import get_debounce_scheduler
from triage.services.snapshot_service import SnapshotService
from triage.services.task_runner import get_task_runner
from triage.utils.errors import E, api_error
from triage.utils.helpers import parse_datetime, parse_int

logger = logging.getLogger(__name__)

investigation_bp = Blueprint("investigations", __name__, url_prefix="/api/v1/investigations")

register_service_errors(investigation_bp)


def _since_param():
    """Parse ``?since=``; returns (datetime | None, error_response | None)."""
    raw = request.args.get("since")
    if not raw:
        return None, None
    since = parse_datetime(raw)
    if since is None:
        return None, api_error(E.VALIDATION_INVALID, "since must be an ISO timestamp")
    return since, None


# ═════════════════════════════════════════════════════════════════════════════
# Investigation CRUD
# ═════════════════════════════════════════════════════════════════════════════


@investigation_bp.route("", methods=["GET"])
def list_investigations():
    """List investigations, optionally filtered by status."""
    q = inv_svc.list_investigations(request.args.get("status") or None)
    items, total = paginate_query(q)
    return jsonify({"items": [i.to_dict() for i in items], "total": total})


@investigation_bp.route("", methods=["POST"])
def create_investigation():
    """Start an investigation for a ticket. Body: {ticket_id}."""
    data = request.get_json(silent=True) or {}
    if data.get("ticket_id") in (None, ""):
        return api_error(E.VALIDATION_REQUIRED, "ticket_id is required")
    ticket_id = parse_int(data["ticket_id"])
    if ticket_id is None:
        return api_error(E.VALIDATION_INVALID, "ticket_id must be an integer")

    investigation = inv_svc.create_investigation(ticket_id)
    return jsonify(inv_svc.investigation_detail(investigation)), 201


@investigation_bp.route("/stats", methods=["GET"])
def investigation_stats():
    return jsonify(inv_svc.get_stats())


@investigation_bp.route("/<int:investigation_id>", methods=["GET"])
def get_investigation(investigation_id):
    investigation = inv_svc.get_investigation(investigation_id)
    return jsonify(inv_svc.investigation_detail(investigation))


@investigation_bp.route("/<int:investigation_id>", methods=["PUT"])
def update_investigation(investigation_id):
    """Edit classification fields. Body: any of customer_name, classification, ..."""
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return api_error(E.VALIDATION_INVALID, "Request body must be a JSON object")
    investigation = inv_svc.update_investigation(investigation_id, data)
    return jsonify(investigation.to_dict())


@investigation_bp.route("/<int:investigation_id>/files", methods=["GET"])
def get_files(investigation_id):
    return jsonify({"files": inv_svc.get_files(investigation_id)})


@investigation_bp.route("/<int:investigation_id>/activity", methods=["GET"])
def get_activity(investigation_id):
    since = request.args.get("since") or None
    events = inv_svc.get_activity(investigation_id, since=since)
    return jsonify({"events": events, "total": len(events)})


@investigation_bp.route("/<int:investigation_id>/conversation", methods=["GET"])
def get_conversation(investigation_id):
    """All conversation items across runs, oldest first."""
    since, err = _since_param()
    if err:
        return err
    investigation = inv_svc.get_investigation(investigation_id)
    items = conversation.list_items(investigation, since=since)
    return jsonify({"items": items, "total": len(items)})


# ═════════════════════════════════════════════════════════════════════════════
# Workflow
# ═════════════════════════════════════════════════════════════════════════════


@investigation_bp.route("/<int:investigation_id>/checkpoint", methods=["POST"])
def checkpoint_action(investigation_id):
    """Record an operator decision. Body: {checkpoint, action, feedback?}."""
    data = request.get_json(silent=True) or {}
    checkpoint = (data.get("checkpoint") or "").strip()
    action = (data.get("action") or "").strip()
    if not checkpoint or not action:
        return api_error(E.VALIDATION_REQUIRED, "checkpoint and action are required")
    feedback = data.get("feedback")
    if feedback is not None and not isinstance(feedback, str):
        return api_error(E.VALIDATION_INVALID, "feedback must be a string")

    result = apply_checkpoint_action(investigation_id, checkpoint, action, feedback)
    return jsonify(result)


@investigation_bp.route("/<int:investigation_id>/retry", methods=["POST"])
def retry_investigation(investigation_id):
    return jsonify(inv_svc.retry_investigation(investigation_id))


@investigation_bp.route("/<int:investigation_id>/hard-reset", methods=["POST"])
def hard_reset(investigation_id):
    return jsonify(run_service.hard_reset(investigation_id))


@investigation_bp.route("/<int:investigation_id>/tasks", methods=["GET"])
def list_tasks(investigation_id):
    inv_svc.get_investigation(investigation_id)
    limit = parse_int(request.args.get("limit"), default=50)
    return jsonify({"items": get_task_runner().list_tasks(investigation_id, limit=limit)})


# ═════════════════════════════════════════════════════════════════════════════
# Runs
# ═════════════════════════════════════════════════════════════════════════════


@investigation_bp.route("/<int:investigation_id>/runs", methods=["GET"])
def list_runs(investigation_id):
    runs = run_service.list_runs(investigation_id)
    return jsonify({"items": runs, "total": len(runs)})


@investigation_bp.route("/<int:investigation_id>/runs/<int:run_number>/conversation",
                        methods=["GET"])
def get_run_conversation(investigation_id, run_number):
    since, err = _since_param()
    if err:
        return err
    investigation = inv_svc.get_investigation(investigation_id)
    run_service.get_run(investigation_id, run_number)
    items = conversation.list_items(investigation, run_number=run_number, since=since)
    return jsonify({"run_number": run_number, "items": items, "total": len(items)})


# ═════════════════════════════════════════════════════════════════════════════
# Versions
# ═════════════════════════════════════════════════════════════════════════════


@investigation_bp.route("/<int:investigation_id>/versions", methods=["GET"])
def list_versions(investigation_id):
    investigation = inv_svc.get_investigation(investigation_id)
    run_number = None
    if request.args.get("run"):
        run_number = parse_int(request.args["run"])
        if run_number is None:
            return api_error(E.VALIDATION_INVALID, "run must be an integer")
    versions = SnapshotService.list_versions(investigation_id, run_number)
    return jsonify({
        "items": [v.to_dict() for v in versions],
        "total": len(versions),
        "current_version_id": investigation.current_version_id,
        "anchor_version_id": investigation.anchor_version_id,
    })


@investigation_bp.route("/<int:investigation_id>/versions/diff", methods=["GET"])
def diff_versions(investigation_id):
    a = parse_int(request.args.get("a"))
    b = parse_int(request.args.get("b"))
    if a is None or b is None:
        return api_error(E.VALIDATION_REQUIRED, "Query params a and b (version ids) are required")
    inv_svc.get_investigation(investigation_id)
    return jsonify(SnapshotService.diff(investigation_id, a, b))


@investigation_bp.route("/<int:investigation_id>/versions/<int:version_id>", methods=["GET"])
def get_version(investigation_id, version_id):
    inv_svc.get_investigation(investigation_id)
    version = SnapshotService.get_version(investigation_id, version_id)
    return jsonify(version.to_dict(include_content=True))


@investigation_bp.route("/<int:investigation_id>/versions/restore", methods=["POST"])
def restore_version(investigation_id):
    """Restore to a version. Body: {version_id, mode: rollback|refocus}."""
    data = request.get_json(silent=True) or {}
    if data.get("version_id") in (None, "") or not data.get("mode"):
        return api_error(E.VALIDATION_REQUIRED, "version_id and mode are required")
    version_id = parse_int(data["version_id"])
    if version_id is None:
        return api_error(E.VALIDATION_INVALID, "version_id must be an integer")

    return jsonify(SnapshotService.restore(investigation_id, version_id, data["mode"]))


# ═════════════════════════════════════════════════════════════════════════════
# Customer replies
# ═════════════════════════════════════════════════════════════════════════════


@investigation_bp.route("/<int:investigation_id>/sync-responses", methods=["POST"])
def sync_responses(investigation_id):
    """Sync the ticket thread. Body (optional): {body: raw thread text}."""
    data = request.get_json(silent=True) or {}
    body = data.get("body")
    if body is not None and not isinstance(body, str):
        return api_error(E.VALIDATION_INVALID, "body must be a string")
    return jsonify(response_sync.sync_responses(investigation_id, body=body))


@investigation_bp.route("/<int:investigation_id>/responses", methods=["GET"])
def list_responses(investigation_id):
    items = response_sync.list_responses(investigation_id)
    return jsonify({"items": items, "total": len(items)})


@investigation_bp.route("/<int:investigation_id>/debounce-status", methods=["GET"])
def debounce_status(investigation_id):
    inv_svc.get_investigation(investigation_id)
    return jsonify(get_debounce_scheduler().get_status(investigation_id))
