"""Standardised API error responses.

Usage
-----
    from mbee.utils.errors import api_error, error_response, E

    return api_error(E.VALIDATION_REQUIRED, "Request body must be JSON")
    return error_response(exc)          # any MBEEError
"""

from __future__ import annotations

from flask import jsonify

from mbee.core.exceptions import MBEEError


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants.

    The codes double as ``MBEEError.code`` values, so a raised engine
    error and a hand-built blueprint error look the same on the wire.
    """

    # Validation – HTTP 400
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    DATA_FORMAT = "ERR_DATA_FORMAT"

    # Auth – HTTP 401 / 403
    UNAUTHORIZED = "ERR_UNAUTHORIZED"
    FORBIDDEN = "ERR_FORBIDDEN"
    OPERATION = "ERR_OPERATION"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Server – HTTP 500
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.DATA_FORMAT: 400,
    E.UNAUTHORIZED: 401,
    E.FORBIDDEN: 403,
    E.OPERATION: 403,
    E.NOT_FOUND: 404,
    E.DATABASE: 500,
    E.INTERNAL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (missing ids, etc.).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


def error_response(error: MBEEError):
    """Render a typed MBEE error with its own status code."""
    details = None
    missing = getattr(error, "resource_ids", None)
    if missing:
        details = {"missing": missing}
    return api_error(error.code, error.message, status=error.status_code, details=details)
