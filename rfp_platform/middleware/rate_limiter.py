"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in rfp_platform/__init__.py with no
default limits; this module applies granular limits per route category.
Engine-triggering routes (timeline runs) carry their own shared limit in
timeline_bp.

Usage:
    from rfp_platform.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

# Login: strict (credential guessing)
AUTH_LIMIT = "20/minute"

# Write-heavy mutation routes
WRITE_LIMIT = "120/minute"
WRITE_BLUEPRINTS = ("rfp", "task", "supplier", "readiness")

# Read-focused routes
READ_LIMIT = "300/minute"
READ_BLUEPRINTS = ("portfolio", "notification", "activity")


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints (per remote IP).

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    bp = app.blueprints.get("auth")
    if bp:
        limiter.limit(AUTH_LIMIT)(bp)

    for bp_name in WRITE_BLUEPRINTS:
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(WRITE_LIMIT)(bp)

    for bp_name in READ_BLUEPRINTS:
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(READ_LIMIT)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured — auth: %s, write: %s, read: %s",
        AUTH_LIMIT, WRITE_LIMIT, READ_LIMIT,
    )
