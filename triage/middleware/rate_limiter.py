"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter. The Limiter
instance is created in triage/__init__.py with no default limits; this
module applies limits per route category.

Usage:
    from triage.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

# Dashboard polls investigations every few seconds.
INVESTIGATION_LIMIT = "300/minute"
JOBS_LIMIT = "20/minute"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Investigation API: 300/minute
        - Jobs API: 20/minute
        - Health check: exempt

    Rate limiting is disabled when RATELIMIT_ENABLED is false (testing).
    """
    if not app.config.get("RATELIMIT_ENABLED", True):
        app.logger.info("Rate limiter disabled")
        return

    bp = app.blueprints.get("investigations")
    if bp:
        limiter.limit(INVESTIGATION_LIMIT)(bp)

    bp = app.blueprints.get("jobs")
    if bp:
        limiter.limit(JOBS_LIMIT)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured — investigations: %s, jobs: %s",
        INVESTIGATION_LIMIT, JOBS_LIMIT,
    )
