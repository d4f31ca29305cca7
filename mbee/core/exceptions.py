"""
MBEE exception hierarchy.

Every error raised by the element engine is one of the types below. Each
carries the HTTP status the API layer should answer with and a stable
machine-readable code, so blueprints register a single handler against
``MBEEError`` and get consistent responses everywhere.

Usage:
    from mbee.core.exceptions import NotFoundError, OperationError

    raise NotFoundError("Element", ["e1", "e2"])
    raise OperationError("Cannot delete the root element [model].")
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)


class MBEEError(Exception):
    """Base class for every typed error surfaced by MBEE.

    Args:
        message: Human-readable description, returned to API callers.
        log_level: Level the error is logged at when raised. ``None``
                   skips logging (used when re-wrapping an already
                   logged error).
    """

    status_code = 500
    code = "ERR_INTERNAL"
    description = "Internal Server Error"

    def __init__(self, message: str = "", log_level: int | None = logging.WARNING) -> None:
        self.message = message or self.description
        super().__init__(self.message)
        if log_level is not None:
            logger.log(log_level, "%s: %s", type(self).__name__, self.message)

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "code": self.code,
            "description": self.description,
        }


class DataFormatError(MBEEError):
    """Malformed or wrongly typed input (bad branch, bad id, bad options)."""

    status_code = 400
    code = "ERR_DATA_FORMAT"
    description = "Bad Request"


class AuthorizationError(MBEEError):
    """The caller could not be identified."""

    status_code = 401
    code = "ERR_UNAUTHORIZED"
    description = "Unauthorized"


class PermissionDeniedError(MBEEError):
    """The caller lacks the capability the operation requires."""

    status_code = 403
    code = "ERR_FORBIDDEN"
    description = "Forbidden"


class OperationError(MBEEError):
    """Well-formed input that a domain rule forbids.

    Self-parenting, touching a root element, cyclic reparenting, archived
    mutations, non-whitelisted cross-project references and duplicate ids
    all land here.
    """

    status_code = 403
    code = "ERR_OPERATION"
    description = "Forbidden"


class NotFoundError(MBEEError):
    """A referenced project, element, parent, source or target is missing.

    Args:
        resource: Entity name used in the message (e.g. "Element").
        resource_ids: One id or a list of ids that could not be found.
        message: Overrides the generated message entirely.
    """

    status_code = 404
    code = "ERR_NOT_FOUND"
    description = "Not Found"

    def __init__(
        self,
        resource: str = "Resource",
        resource_ids: str | list[str] | None = None,
        message: str | None = None,
        log_level: int | None = logging.WARNING,
    ) -> None:
        self.resource = resource
        if isinstance(resource_ids, str):
            resource_ids = [resource_ids]
        self.resource_ids = list(resource_ids or [])
        if message is None:
            if self.resource_ids:
                message = f"The following {resource.lower()}s were not found: [{', '.join(self.resource_ids)}]."
            else:
                message = f"{resource} not found."
        super().__init__(message, log_level=log_level)


class ServerError(MBEEError):
    """Unexpected failure inside MBEE itself."""

    status_code = 500
    code = "ERR_INTERNAL"
    description = "Internal Server Error"


class DatabaseError(MBEEError):
    """The underlying store rejected or failed an operation."""

    status_code = 500
    code = "ERR_DATABASE"
    description = "Internal Server Error"


def capture_error(error: BaseException) -> MBEEError:
    """Normalise any exception into an ``MBEEError``.

    MBEE errors pass through untouched; store failures become
    ``DatabaseError`` and everything else becomes ``ServerError``. The
    original exception is logged with its traceback once here.
    """
    if isinstance(error, MBEEError):
        return error
    if isinstance(error, SQLAlchemyError):
        logger.error("Database failure: %s", error, exc_info=error)
        return DatabaseError("A database error occurred.", log_level=None)
    logger.error("Unexpected error: %s", error, exc_info=error)
    return ServerError(str(error) or type(error).__name__, log_level=None)
