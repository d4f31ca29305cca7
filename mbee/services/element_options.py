"""
Options accepted by element engine operations.

Each operation parses its raw options mapping once, at the boundary, into an
``ElementOptions`` instance. Keys outside the operation's allowed set, or
values of the wrong type, raise ``DataFormatError``; unknown populate
fields raise ``OperationError``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from mbee.core.exceptions import DataFormatError, OperationError
from mbee.models.element import Element

# Equality filters accepted by find/search (plus any ``custom.<path>``)
FILTER_KEYS = frozenset({
    "parent", "source", "target", "type", "name",
    "createdBy", "lastModifiedBy", "archivedBy",
})
REFERENCE_FILTERS = frozenset({"parent", "source", "target"})

FIND_OPTIONS = frozenset({
    "populate", "fields", "archived", "subtree", "depth", "rootpath",
    "limit", "skip", "sort", "lean",
})
SEARCH_OPTIONS = FIND_OPTIONS - {"subtree", "depth", "rootpath"}
WRITE_OPTIONS = frozenset({"populate", "fields", "lean"})
REMOVE_OPTIONS = frozenset()

_BOOL_OPTIONS = ("archived", "subtree", "rootpath", "lean")
_INT_OPTIONS = ("depth", "limit", "skip")


@dataclass
class ElementOptions:
    populate: list[str] = field(default_factory=list)
    fields: list[str] = field(default_factory=list)
    archived: bool = False
    subtree: bool = False
    depth: int | None = None
    rootpath: bool = False
    limit: int = 0
    skip: int = 0
    sort: str | None = None
    lean: bool = False
    filters: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def parse(
        cls,
        options: dict | None,
        allowed: frozenset = FIND_OPTIONS,
        filters_allowed: bool = False,
    ) -> "ElementOptions":
        """Validate ``options`` against ``allowed`` and build the struct."""
        if options is None:
            return cls()
        if isinstance(options, cls):
            return options
        if not isinstance(options, dict):
            raise DataFormatError("Options must be an object.")

        parsed = cls()
        for key, value in options.items():
            if filters_allowed and (key in FILTER_KEYS or key.startswith("custom.")):
                parsed.filters[key] = _filter_value(key, value)
                continue
            if key not in allowed:
                raise DataFormatError(f"Invalid option: [{key}].")

            if key in _BOOL_OPTIONS:
                if not isinstance(value, bool):
                    raise DataFormatError(f"The option '{key}' is not a boolean.")
                setattr(parsed, key, value)
            elif key in _INT_OPTIONS:
                if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                    raise DataFormatError(f"The option '{key}' is not a non-negative number.")
                setattr(parsed, key, value)
            elif key == "populate":
                parsed.populate = _populate_list(value)
            elif key == "fields":
                parsed.fields = _fields_list(value)
            elif key == "sort":
                parsed.sort = _sort_key(value)
        return parsed


def _string_list(key: str, value: Any) -> list[str]:
    if isinstance(value, str):
        value = [v.strip() for v in value.split(",") if v.strip()]
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise DataFormatError(f"The option '{key}' is not an array of strings.")
    return value


def _fields_list(value: Any) -> list[str]:
    fields = _string_list("fields", value)
    known = set(Element.DOCUMENT_COLUMNS) | {"id"} | set(Element.VIRTUAL_FIELDS)
    for f in fields:
        if f.lstrip("-") not in known:
            raise DataFormatError(f"Invalid field [{f.lstrip('-')}] in the option 'fields'.")
    return fields


def _populate_list(value: Any) -> list[str]:
    fields = _string_list("populate", value)
    for f in fields:
        if f not in Element.VALID_POPULATE_FIELDS:
            raise OperationError(f"Cannot populate field [{f}].")
    return fields


def _sort_key(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise DataFormatError("The option 'sort' is not a string.")
    value = value.strip()
    name = value.lstrip("-")
    if name == "id":
        name = "_id"
    if name not in Element.DOCUMENT_COLUMNS or name == "custom":
        raise DataFormatError(f"Cannot sort by field [{value.lstrip('-')}].")
    return f"-{name}" if value.startswith("-") else name


def _filter_value(key: str, value: Any) -> Any:
    if key.startswith("custom.") and not key[len("custom."):]:
        raise DataFormatError("The option 'custom.' needs a key path.")
    if not isinstance(value, str):
        raise DataFormatError(f"The option '{key}' is not a string.")
    return value
