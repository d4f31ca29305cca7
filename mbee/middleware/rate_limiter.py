"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in mbee/__init__.py with no default limits;
this module applies the element API limit and exempts the health probes.

Limits are keyed by the authenticated username when known, else by the
remote IP, so several users behind one proxy do not share one limit.

Usage:
    from mbee.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import g, request as flask_request

logger = logging.getLogger(__name__)


def rate_limit_key():
    """Dynamic rate limit key: username if authenticated, else remote IP."""
    principal = getattr(g, "principal", None)
    if principal is not None:
        return f"user:{principal.id}"
    return flask_request.remote_addr or "unknown"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Rate limiting is disabled when RATELIMIT_ENABLED is false (testing).
    """
    if not app.config.get("RATELIMIT_ENABLED", True):
        app.logger.info("Rate limiter disabled (RATELIMIT_ENABLED=False)")
        return

    element_limit = app.config.get("ELEMENT_RATE_LIMIT", "600 per minute")
    bp = app.blueprints.get("elements")
    if bp:
        limiter.limit(element_limit, key_func=rate_limit_key)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info("Rate limiter configured: elements=%s", element_limit)
