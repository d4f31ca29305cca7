"""
MBEE
Authentication middleware.

Provides:
    - API key authentication via X-API-Key header or ?api_key= query param
    - Resolution of the authenticated username to a ``User`` row, stored as
      ``g.principal`` for the element endpoints
    - CSRF protection for state-changing requests (non-GET/HEAD/OPTIONS)

Security model:
    - All /api/* endpoints require a valid API key (except /api/health)
    - Capabilities (read / write / global admin) are checked by the element
      engine, not here

Configuration (env vars):
    API_KEYS         : comma-separated list of valid API keys
                        e.g. "key1:alice,key2:bob"
                        Format: "<key>:<username>"
    API_AUTH_ENABLED : set to "false" to disable auth (development only);
                        the caller is then named by the X-MBEE-User header
"""

import logging
import os
from typing import Optional

from flask import current_app, g, jsonify, request

from mbee.models import db
from mbee.models.user import User

logger = logging.getLogger(__name__)

DEV_USER_HEADER = "X-MBEE-User"


def _parse_api_keys() -> dict[str, str]:
    """
    Parse API_KEYS env var into {key: username} mapping.

    Format: "key1:alice,key2:bob"
    Entries without a username are ignored.
    """
    raw = os.getenv("API_KEYS", "")
    if not raw.strip():
        return {}

    keys = {}
    for entry in raw.split(","):
        entry = entry.strip()
        if not entry:
            continue
        if ":" not in entry:
            logger.warning("API key entry without a username ignored")
            continue
        key, username = entry.rsplit(":", 1)
        keys[key.strip()] = username.strip()
    return keys


def _is_auth_enabled() -> bool:
    """Check whether authentication is enabled (env var or app config)."""
    env_val = os.getenv("API_AUTH_ENABLED", "")
    if env_val:
        return env_val.lower() not in ("false", "0", "no", "off")
    try:
        return current_app.config.get("API_AUTH_ENABLED", "true").lower() not in ("false", "0", "no", "off")
    except RuntimeError:
        # Outside app context
        return True


def _get_api_key_from_request() -> Optional[str]:
    """Extract API key from request header or query parameter."""
    key = request.headers.get("X-API-Key", "").strip()
    if key:
        return key
    # Fallback to query param (less secure, for quick testing)
    return request.args.get("api_key", "").strip() or None


def _check_content_type():
    """
    For state-changing requests (POST/PUT/PATCH/DELETE), require
    Content-Type: application/json. HTML forms cannot send that content
    type, so this doubles as a lightweight CSRF mitigation.
    """
    if request.method in ("POST", "PUT", "PATCH", "DELETE"):
        ct = request.content_type or ""
        if "application/json" not in ct and request.content_length and request.content_length > 0:
            return jsonify({
                "error": "Content-Type must be application/json for state-changing requests"
            }), 415
    return None


def _load_principal(username: str):
    user = db.session.get(User, username) if username else None
    if user is None or user.archived:
        logger.warning("Unknown or archived user in request: %s", username)
        return None, (jsonify({"error": "Unknown user", "code": "ERR_UNAUTHORIZED"}), 401)
    return user, None


def init_auth(app):
    """
    Install authentication middleware on the Flask app.

    - Attaches a before_request hook for API routes
    - Skips health check routes
    """
    @app.before_request
    def _before_request_auth():
        if not request.path.startswith("/api/"):
            return None
        if request.path == "/api/health" or request.path.startswith("/api/health/"):
            return None
        # OPTIONS pre-flight requests don't need auth
        if request.method == "OPTIONS":
            return None

        csrf_error = _check_content_type()
        if csrf_error:
            return csrf_error

        if not _is_auth_enabled():
            username = request.headers.get(DEV_USER_HEADER, "").strip()
            if not username:
                return jsonify({
                    "error": f"Authentication disabled; name the caller with the {DEV_USER_HEADER} header.",
                    "code": "ERR_UNAUTHORIZED",
                }), 401
            g.principal, err = _load_principal(username)
            return err

        api_key = _get_api_key_from_request()
        if not api_key:
            return jsonify({"error": "Authentication required. Provide X-API-Key header.",
                            "code": "ERR_UNAUTHORIZED"}), 401

        api_keys = _parse_api_keys()
        if not api_keys:
            logger.error("API_KEYS env var is not configured but API_AUTH_ENABLED=true")
            return jsonify({"error": "Server authentication not configured"}), 500

        username = api_keys.get(api_key)
        if username is None:
            logger.warning("Invalid API key attempt: %s...", api_key[:8])
            return jsonify({"error": "Invalid API key", "code": "ERR_UNAUTHORIZED"}), 401

        g.principal, err = _load_principal(username)
        return err

    logger.info("Auth middleware installed (enabled=%s)", _is_auth_enabled())
