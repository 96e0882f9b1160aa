"""
Support Triage Orchestrator
Flask Application Factory.

Usage:
    from triage import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import importlib
import logging
import os

from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate

from triage.config import config
from triage.models import db
from triage.middleware.logging_config import configure_logging
from triage.middleware.timing import init_request_timing
from triage.middleware.diagnostics import run_startup_diagnostics
from triage.middleware.rate_limiter import init_rate_limits
from triage.utils.errors import E, api_error

logger = logging.getLogger(__name__)

# ── SQLite FK enforcement (global engine event) ─────────────────────────
from sqlalchemy import event as _sa_event, engine as _sa_engine


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # no global limit; applied per blueprint
    storage_uri=os.getenv("RATELIMIT_STORAGE_URI", "memory://"),
)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    # Instantiated so ProductionConfig can refuse to start without its env vars
    app.config.from_object(config[config_name]())

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Request timing middleware ────────────────────────────────────────
    init_request_timing(app)

    app.config.setdefault("MAX_CONTENT_LENGTH", 2 * 1024 * 1024)  # 2 MB

    # ── Collaborators (tests swap these in app.extensions) ───────────────
    from triage.integrations.agent_cli import AgentCLIClient
    from triage.integrations.ticket_source import AgentTicketSource
    from triage.services.debounce import DebounceScheduler
    from triage.services.task_runner import PhaseTaskRunner

    agent = AgentCLIClient(app.config["AGENT_COMMAND"], app.config["AGENT_TIMEOUT_SECONDS"])
    app.extensions["agent_client"] = agent
    app.extensions["ticket_source"] = AgentTicketSource(agent)
    app.extensions["phase_runner"] = PhaseTaskRunner()
    debounce = DebounceScheduler(app)

    # ── Import all models so Alembic can detect them ─────────────────────
    from triage.models import investigation as _investigation_models  # noqa: F401
    from triage.models import scheduling as _scheduling_models        # noqa: F401

    # ── Scheduler initialization (import jobs to register them) ──────────
    importlib.import_module("triage.services.scheduled_jobs")  # registers @register_job handlers
    from triage.services.scheduler_service import SchedulerService

    SchedulerService.init_app(app)

    # ── Auto-create tables + startup recovery ────────────────────────────
    with app.app_context():
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except Exception as e:
            app.logger.warning("db.create_all() failed: %s", e)

        app.extensions["phase_runner"].recover_interrupted()
        debounce.rearm()
        SchedulerService.ensure_jobs_registered()

    # ── Blueprints ───────────────────────────────────────────────────────
    from triage.blueprints.investigation_bp import investigation_bp
    from triage.blueprints.jobs_bp import jobs_bp
    from triage.blueprints.health_bp import health_bp

    app.register_blueprint(investigation_bp)
    app.register_blueprint(jobs_bp)
    app.register_blueprint(health_bp)

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        if request.path.startswith("/api/"):
            return api_error(E.NOT_FOUND, "Not found", details={"path": request.path})
        return {"error": "Not found"}, 404

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        db.session.rollback()
        return api_error(E.INTERNAL, "Internal server error")

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(429)
    def rate_limited(e):
        return api_error(E.RATE_LIMITED, "Too many requests", details={"limit": e.description})

    # ── Startup diagnostics ──────────────────────────────────────────────
    run_startup_diagnostics(app)

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    if app.config.get("SCHEDULER_ENABLED"):
        SchedulerService.start(app.config.get("SCHEDULER_INTERVAL_SECONDS", 60))

    return app
