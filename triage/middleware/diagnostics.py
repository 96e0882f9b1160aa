"""
Startup diagnostics — runs once when the Flask app starts.

Checks the database, the investigations directory and the agent binary,
then logs a summary banner.
"""

import logging
import os
import shutil
import sys

from flask import Flask

from triage.models import db

logger = logging.getLogger(__name__)


def run_startup_diagnostics(app: Flask):
    """Run diagnostic checks during app startup."""
    if app.config.get("TESTING"):
        return

    issues: list[str] = []

    with app.app_context():
        py = f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}"

        # ── Database connectivity ────────────────────────────────────
        db_status = "ok"
        try:
            db.session.execute(db.text("SELECT 1"))
        except Exception as exc:
            db_status = "FAILED"
            issues.append(f"Database unreachable: {exc}")

        # ── Table count ──────────────────────────────────────────────
        from sqlalchemy import inspect as sa_inspect
        table_count = len(sa_inspect(db.engine).get_table_names())
        if table_count == 0:
            issues.append("No tables found — run 'flask db upgrade'")

        # ── Investigations directory ─────────────────────────────────
        inv_dir = app.config["INVESTIGATIONS_DIR"]
        dir_status = "ok"
        if not os.path.isdir(inv_dir):
            dir_status = "missing (created on first investigation)"
        elif not os.access(inv_dir, os.W_OK):
            dir_status = "NOT WRITABLE"
            issues.append(f"Investigations directory not writable: {inv_dir}")

        # ── Agent binary ─────────────────────────────────────────────
        agent = app.extensions.get("agent_client")
        binary = agent.argv[0] if agent and agent.argv else ""
        agent_status = "found" if binary and shutil.which(binary) else "NOT FOUND"
        if agent_status != "found":
            issues.append(f"Agent command not on PATH: {binary or '(empty)'}")

        banner = f"""
╔══════════════════════════════════════════════════════════════╗
║  Support Triage Orchestrator — Startup Diagnostics           ║
╠══════════════════════════════════════════════════════════════╣
║  Python      : {py:<46s}║
║  Debug       : {str(app.debug):<46s}║
║  Database    : {db_status:<46s}║
║  Tables      : {str(table_count):<46s}║
║  Docs dir    : {dir_status:<46s}║
║  Agent       : {agent_status:<46s}║
║  Phase mode  : {app.config.get('PHASE_EXECUTION_MODE', 'thread'):<46s}║
╚══════════════════════════════════════════════════════════════╝"""
        logger.info(banner)

        if issues:
            logger.warning("Startup issues detected:")
            for issue in issues:
                logger.warning("  ⚠ %s", issue)
        else:
            logger.info("✅ All startup checks passed")
