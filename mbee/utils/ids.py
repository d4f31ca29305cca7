"""Namespaced identifier helpers.

Every stored identifier is a delimited path:

    org                      -> "acme"
    org:project              -> "acme:rocket"
    org:project:branch:elem  -> "acme:rocket:master:e1"

Character-set rules live in ``mbee.core.validators``; these helpers only
join and split.
"""

from __future__ import annotations

from mbee.core.exceptions import DataFormatError

ID_DELIMITER = ":"


def build_id(*segments: str | None) -> str:
    """Join the non-empty segments with the delimiter, in order."""
    return ID_DELIMITER.join(str(s) for s in segments if s)


def parse_id(uid: str) -> list[str]:
    """Split a namespaced id into its segments.

    Raises:
        DataFormatError: ``uid`` is not a string or has no delimiter.
    """
    if not isinstance(uid, str) or ID_DELIMITER not in uid:
        raise DataFormatError(f"Invalid ID [{uid}]: missing delimiter.")
    return uid.split(ID_DELIMITER)


def local_id(uid: str) -> str:
    """Last segment of ``uid``; a bare local id is returned unchanged."""
    return uid.rsplit(ID_DELIMITER, 1)[-1]

