"""
Permission Service: project capability checks for element operations.

Evaluation is deterministic and deny-by-default:
  - global admins pass every check
  - otherwise the principal must hold the capability in ``project.permissions``
  - ``internal`` projects are additionally readable by anyone holding
    ``read`` on the org
  - capabilities are independent: holding ``write`` says nothing about ``read``

The ``can_*`` helpers are pure; the ``require_*`` variants (read, write
and global admin, the checks element operations gate on) raise
``PermissionDeniedError`` and log the denial.
"""

import logging

from mbee.core.exceptions import PermissionDeniedError
from mbee.utils.ids import local_id

logger = logging.getLogger(__name__)

READ = "read"
WRITE = "write"
ADMIN = "admin"


def _holds(project, principal, capability: str) -> bool:
    if principal is None:
        return False
    if principal.admin:
        return True
    return capability in (project.permissions or {}).get(principal.id, [])


def can_read(project, principal) -> bool:
    if _holds(project, principal, READ):
        return True
    if principal is not None and project.visibility == "internal" and project.org is not None:
        return READ in (project.org.permissions or {}).get(principal.id, [])
    return False


def can_write(project, principal) -> bool:
    return _holds(project, principal, WRITE)


def can_admin(project, principal) -> bool:
    return _holds(project, principal, ADMIN)


def _deny(project, principal, action: str):
    username = getattr(principal, "id", None)
    logger.warning(
        "Permission denied: user=%s action=%s project=%s", username, action, project.id,
    )
    raise PermissionDeniedError(
        f"User does not have permission to {action} elements on the project "
        f"[{local_id(project.id)}].",
        log_level=None,
    )


def require_read(project, principal) -> None:
    if not can_read(project, principal):
        _deny(project, principal, "find")


def require_write(project, principal, action: str = "modify") -> None:
    if not can_write(project, principal):
        _deny(project, principal, action)


def require_global_admin(principal, action: str = "perform this operation") -> None:
    """Raise unless ``principal`` carries the global admin flag."""
    if principal is None or not principal.admin:
        logger.warning(
            "Permission denied: user=%s is not a global admin (%s)",
            getattr(principal, "id", None), action,
        )
        raise PermissionDeniedError(
            f"User does not have permission to {action}.", log_level=None,
        )
