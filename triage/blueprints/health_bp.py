"""
Health check blueprint.

Endpoints:
    GET /api/v1/health        — summary used by the dashboard header
    GET /api/v1/health/ready  — simple 200 for load balancers
    GET /api/v1/health/live   — detailed system health (DB, documents, agent)
    GET /api/v1/health/agent  — sends a trivial prompt to check agent login
"""

import logging
import os
import shutil
import time

from flask import Blueprint, current_app, jsonify

from triage.core.exceptions import AgentAuthError, AgentError
from triage.integrations import get_agent_client
from triage.models import db
from triage.models.investigation import Investigation

logger = logging.getLogger(__name__)

AGENT_CHECK_PROMPT = "Respond with OK"
AGENT_CHECK_TIMEOUT = 10

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


@health_bp.route("", methods=["GET"])
def health():
    """Summary: database reachable and investigation count."""
    try:
        count = db.session.query(Investigation).count()
    except Exception as exc:
        logger.error("Health check — database failed: %s", exc)
        return jsonify({"status": "degraded", "detail": str(exc)}), 503
    return jsonify({"status": "ok", "investigations": count}), 200


@health_bp.route("/ready", methods=["GET"])
def ready():
    """Simple readiness probe — always 200 if app is running."""
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    """Detailed liveness check with dependency status."""
    checks = {}
    overall = True

    # ── Database ─────────────────────────────────────────────────────
    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        db_ms = (time.perf_counter() - t0) * 1000
        checks["database"] = {"status": "ok", "latency_ms": round(db_ms, 1)}
    except Exception as exc:
        checks["database"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check — database failed: %s", exc)

    # ── Investigations directory ─────────────────────────────────────
    inv_dir = current_app.config["INVESTIGATIONS_DIR"]
    if os.path.isdir(inv_dir):
        writable = os.access(inv_dir, os.W_OK)
        checks["documents"] = {"status": "ok" if writable else "error", "path": inv_dir}
        overall = overall and writable
    else:
        checks["documents"] = {"status": "missing", "path": inv_dir}

    # ── Agent CLI ────────────────────────────────────────────────────
    # Missing agent degrades phases only; the dashboard stays usable.
    agent = current_app.extensions.get("agent_client")
    binary = agent.argv[0] if agent and agent.argv else ""
    checks["agent"] = {
        "status": "ok" if binary and shutil.which(binary) else "not_found",
        "command": binary,
    }

    # ── App info ─────────────────────────────────────────────────────
    checks["app"] = {
        "name": "Support Triage Orchestrator",
        "debug": current_app.debug,
        "testing": current_app.testing,
        "phase_mode": current_app.config.get("PHASE_EXECUTION_MODE"),
    }

    status_code = 200 if overall else 503
    return jsonify({
        "status": "healthy" if overall else "degraded",
        "checks": checks,
    }), status_code


@health_bp.route("/agent", methods=["GET"])
def agent_auth():
    """Round-trip a trivial prompt so an expired agent login shows up before a phase fails."""
    agent = get_agent_client()
    try:
        agent.run(AGENT_CHECK_PROMPT, timeout=AGENT_CHECK_TIMEOUT)
    except AgentAuthError:
        logger.warning("Health check — agent CLI not authenticated")
        return jsonify({"authenticated": False, "message": agent.login_hint}), 200
    except AgentError as exc:
        logger.warning("Health check — agent CLI failed: %s", exc)
        return jsonify({"authenticated": False, "error": str(exc)}), 200
    return jsonify({"authenticated": True, "message": "Agent CLI is authenticated and ready"}), 200
