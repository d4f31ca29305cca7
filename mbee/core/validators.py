"""
Field validators for organizations, projects, users and elements.

Identifier segments share one pattern: a lowercase letter, digit or
underscore followed by letters, digits, ``-``, ``_`` or ``.``. Each
segment is capped at ``ID_LENGTH`` characters, and new ids may not be one
of the reserved route keywords.

All ``validate_*`` helpers raise ``DataFormatError`` on failure and
return the validated value otherwise.
"""

from __future__ import annotations

import re
from typing import Any

from mbee.core.exceptions import DataFormatError
from mbee.utils.ids import local_id

ID_PATTERN = r"([_a-z0-9])([-_a-z0-9.]){0,}"
ID_LENGTH = 36

USERNAME_PATTERN = r"^([a-z])([a-z0-9_]){0,}$"

RESERVED_KEYWORDS = frozenset({
    "css", "js", "img", "doc", "docs", "webfonts", "login", "about",
    "assets", "static", "public", "api", "organizations", "orgs",
    "projects", "users", "plugins", "ext", "extension", "search",
    "whoami", "profile", "edit", "proj", "elements", "branch",
    "anonymous", "blob", "artifact", "artifacts",
})

_SEGMENT_RE = re.compile(f"^{ID_PATTERN}$")
_USERNAME_RE = re.compile(USERNAME_PATTERN)

# Per-field value checks applied to element patches
_ELEMENT_FIELD_TYPES: dict[str, tuple[type, ...]] = {
    "name": (str,),
    "documentation": (str,),
    "type": (str,),
    "custom": (dict,),
    "archived": (bool,),
}


def validate_segment(value: Any, label: str, reserved: bool = True) -> str:
    """Validate one identifier segment (an org, project or element local id).

    With ``reserved=False`` only the pattern and length are checked; that is
    the rule for ``parent``/``source``/``target`` references.
    """
    if not isinstance(value, str):
        raise DataFormatError(f"{label} ID must be a string.")
    if not _SEGMENT_RE.match(value):
        raise DataFormatError(f"Invalid {label.lower()} ID [{value}].")
    if len(value) > ID_LENGTH:
        raise DataFormatError(
            f"{label} ID [{value}] is too long; max length is {ID_LENGTH} characters."
        )
    if reserved and value in RESERVED_KEYWORDS:
        raise DataFormatError(f"{label} ID [{value}] is a reserved keyword.")
    return value


def validate_org_id(value: Any) -> str:
    validate_segment(value, "Organization")
    if len(value) < 2:
        raise DataFormatError(f"Organization ID [{value}] is too short.")
    return value


def validate_project_id(value: Any) -> str:
    return validate_segment(value, "Project")


def validate_element_id(value: Any) -> str:
    return validate_segment(value, "Element")


def validate_username(value: Any) -> str:
    if not isinstance(value, str) or not _USERNAME_RE.match(value):
        raise DataFormatError(f"Invalid username [{value}].")
    if len(value) > ID_LENGTH or len(value) < 3:
        raise DataFormatError(f"Username [{value}] must be 3-{ID_LENGTH} characters long.")
    if value in RESERVED_KEYWORDS:
        raise DataFormatError(f"Username [{value}] is a reserved keyword.")
    return value


def validate_element_field(field: str, value: Any) -> Any:
    """Re-validate a single patched element value.

    Relationship fields accept ``None`` or a namespaced element id whose
    local segment is a valid element id.
    """
    if field in _ELEMENT_FIELD_TYPES:
        if not isinstance(value, _ELEMENT_FIELD_TYPES[field]):
            expected = _ELEMENT_FIELD_TYPES[field][0].__name__
            raise DataFormatError(f"Element field [{field}] must be of type {expected}.")
        return value
    if field in ("parent", "source", "target"):
        if value is None:
            return value
        if not isinstance(value, str):
            raise DataFormatError(f"Element field [{field}] must be a string.")
        validate_segment(local_id(value), "Element", reserved=False)
        return value
    raise DataFormatError(f"Unknown element field [{field}].")
