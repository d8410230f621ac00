"""
Rate limiting configuration.

Applies per-blueprint limits using Flask-Limiter.  The Limiter instance is
created in query_workflow/__init__.py with no default limits; this module
attaches limits to the write routes only, so polling reads are never
throttled.

Usage:
    from query_workflow.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

QUERY_CREATE_LIMIT = "30/minute"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - POST /api/query-actions:  ACTION_RATE_LIMIT (default 120/minute)
        - POST /api/queries:        30/minute
        - Health check:             exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    action_limit = app.config.get("ACTION_RATE_LIMIT", "120/minute")

    bp = app.blueprints.get("query_actions")
    if bp:
        limiter.limit(action_limit, methods=["POST"])(bp)

    bp = app.blueprints.get("queries")
    if bp:
        limiter.limit(QUERY_CREATE_LIMIT, methods=["POST"])(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured: actions=%s, query create=%s",
        action_limit, QUERY_CREATE_LIMIT,
    )
