"""
Support Triage Orchestrator
Scheduler Service.

Lightweight background job scheduler: registered job functions are run
on a fixed interval by one daemon thread, or on demand through the jobs
API.

Architecture:
    - SchedulerService: job registration, persistence and execution
    - Jobs are recorded in the ScheduledJob model (run history)
    - Manual trigger API for development and testing
    - Pluggable job functions registered via decorator
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from flask import Flask, current_app, has_app_context

from triage.core.exceptions import NotFoundError
from triage.models import db
from triage.models.scheduling import ScheduledJob

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Job Registry
# ═══════════════════════════════════════════════════════════════════════════

_job_registry: dict[str, Callable] = {}


def register_job(name: str):
    """Decorator to register a job function.

    Usage:
        @register_job("debounce_sweep")
        def sweep_debounce_timers(app):
            ...
    """
    def decorator(fn: Callable) -> Callable:
        _job_registry[name] = fn
        return fn
    return decorator


def get_registered_jobs() -> dict[str, Callable]:
    """Return all registered job functions."""
    return dict(_job_registry)


class SchedulerService:
    """
    Interval scheduler.

    Jobs are executed within a Flask app context. The loop thread only
    runs when ``SCHEDULER_ENABLED`` is set.
    """

    _app: Flask | None = None
    _thread: threading.Thread | None = None
    _stop: threading.Event | None = None

    @classmethod
    def init_app(cls, app: Flask) -> None:
        """Initialize scheduler with Flask app context."""
        cls._app = app
        app.extensions["scheduler"] = cls
        logger.info("SchedulerService initialized with %d registered jobs",
                    len(_job_registry))

    @classmethod
    def ensure_jobs_registered(cls) -> list[ScheduledJob]:
        """Create a ScheduledJob row for every registered job that lacks one."""
        interval = current_app.config.get("SCHEDULER_INTERVAL_SECONDS", 60)
        created = []
        for name, fn in _job_registry.items():
            if ScheduledJob.query.filter_by(job_name=name).first():
                continue
            job = ScheduledJob(
                job_name=name,
                description=(fn.__doc__ or f"Scheduled job: {name}").strip().splitlines()[0],
                schedule_type="interval",
                schedule_config={"interval_seconds": interval},
                status="active",
                is_enabled=True,
            )
            db.session.add(job)
            created.append(job)
        if created:
            db.session.commit()
            logger.info("Created %d scheduled job records", len(created))
        return created

    @classmethod
    def run_job(cls, job_name: str) -> dict:
        """
        Execute a single job by name.

        Returns:
            Dict with job_name, status, duration_ms, result and error.

        Raises:
            NotFoundError: no job registered under ``job_name``.
        """
        fn = _job_registry.get(job_name)
        if fn is None:
            raise NotFoundError(resource="Job", resource_id=job_name)
        if has_app_context():
            return cls._run(job_name, fn, current_app._get_current_object())
        with cls._app.app_context():
            try:
                return cls._run(job_name, fn, cls._app)
            finally:
                db.session.remove()

    @classmethod
    def _run(cls, job_name: str, fn: Callable, app: Flask) -> dict:
        start = time.monotonic()
        result = None
        error = None
        status = "success"
        try:
            result = fn(app)
        except Exception as exc:
            db.session.rollback()
            status = "failed"
            error = str(exc)
            logger.exception("Job %s failed: %s", job_name, exc)

        duration_ms = int((time.monotonic() - start) * 1000)
        job_record = ScheduledJob.query.filter_by(job_name=job_name).first()
        if job_record:
            job_record.record_run(
                status=status,
                duration_ms=duration_ms,
                result=result if isinstance(result, dict) else {"output": str(result)},
                error=error,
            )
            db.session.commit()

        return {
            "job_name": job_name,
            "status": status,
            "duration_ms": duration_ms,
            "result": result,
            "error": error,
        }

    @classmethod
    def list_jobs(cls) -> list[dict]:
        """List all registered jobs with their DB status."""
        jobs = []
        for name in _job_registry:
            job_record = ScheduledJob.query.filter_by(job_name=name).first()
            jobs.append({
                "job_name": name,
                "registered": True,
                "db_record": job_record.to_dict() if job_record else None,
            })
        return jobs

    @classmethod
    def toggle_job(cls, job_name: str, enabled: bool) -> dict:
        """Enable or disable a scheduled job."""
        job_record = ScheduledJob.query.filter_by(job_name=job_name).first()
        if not job_record:
            raise NotFoundError(resource="Job", resource_id=job_name)
        job_record.is_enabled = enabled
        job_record.status = "active" if enabled else "paused"
        db.session.commit()
        return job_record.to_dict()

    # ── Loop ─────────────────────────────────────────────────────────────

    @classmethod
    def start(cls, interval_seconds: int | float) -> None:
        """Start the interval loop thread (idempotent)."""
        if cls._thread is not None and cls._thread.is_alive():
            return
        cls._stop = threading.Event()
        cls._thread = threading.Thread(
            target=cls._loop, args=(interval_seconds, cls._stop),
            name="triage-scheduler", daemon=True,
        )
        cls._thread.start()
        logger.info("Scheduler loop started (every %ss)", interval_seconds)

    @classmethod
    def stop(cls) -> None:
        if cls._stop is not None:
            cls._stop.set()
        cls._thread = None

    @classmethod
    def _loop(cls, interval_seconds, stop: threading.Event) -> None:
        while not stop.wait(interval_seconds):
            for name in list(_job_registry):
                with cls._app.app_context():
                    try:
                        job = ScheduledJob.query.filter_by(job_name=name).first()
                        enabled = job is None or job.is_enabled
                    finally:
                        db.session.remove()
                if enabled:
                    cls.run_job(name)
