"""
Background jobs blueprint.

Endpoints:
    GET   /api/v1/jobs                  — registered jobs with run bookkeeping
    GET   /api/v1/jobs/<name>           — one job record
    POST  /api/v1/jobs/<name>/run       — run a job now
    PATCH /api/v1/jobs/<name>/toggle    — enable / disable the interval loop
"""

import logging

from flask import Blueprint, jsonify, request

from triage.blueprints import register_service_errors
from triage.models.scheduling import ScheduledJob
from triage.services.scheduler_service import SchedulerService
from triage.utils.errors import E, api_error

logger = logging.getLogger(__name__)

jobs_bp = Blueprint("jobs", __name__, url_prefix="/api/v1/jobs")

register_service_errors(jobs_bp)


@jobs_bp.route("", methods=["GET"])
def list_jobs():
    """List all registered jobs with their status."""
    jobs = SchedulerService.list_jobs()
    return jsonify({"jobs": jobs, "total": len(jobs)})


@jobs_bp.route("/<job_name>", methods=["GET"])
def get_job(job_name):
    job = ScheduledJob.query.filter_by(job_name=job_name).first()
    if not job:
        return api_error(E.NOT_FOUND, f"Job '{job_name}' not found")
    return jsonify(job.to_dict())


@jobs_bp.route("/<job_name>/run", methods=["POST"])
def run_job(job_name):
    """Manually trigger a job; failures are reported in the body, not as 5xx."""
    return jsonify(SchedulerService.run_job(job_name))


@jobs_bp.route("/<job_name>/toggle", methods=["PATCH"])
def toggle_job(job_name):
    data = request.get_json(silent=True) or {}
    enabled = data.get("enabled")
    if enabled is None:
        return api_error(E.VALIDATION_REQUIRED, "'enabled' field is required (true/false)")
    return jsonify(SchedulerService.toggle_job(job_name, bool(enabled)))
