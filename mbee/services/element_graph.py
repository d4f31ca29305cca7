"""
Tree traversals over the ``parent`` relationship.

  resolve_subtree   breadth-first expansion of a root set to every descendant
  assert_no_cycle   guard run before an element is moved under a new parent
  find_root_path    ancestor chain of one element up to the branch root

Every walk keeps a visited set, so corrupted data (a parent loop written
outside the engine) ends the walk instead of spinning forever.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from sqlalchemy import select

from mbee.core.exceptions import DataFormatError, NotFoundError, OperationError
from mbee.models import db
from mbee.models.element import Element
from mbee.services.batch_query import BatchQueryExecutor
from mbee.utils.ids import build_id, local_id

logger = logging.getLogger(__name__)

ROOT_ELEMENT = "model"


def _parent_of(element_id: str) -> tuple[bool, str | None]:
    """Explicit lookup result: ``(found, parent_id)``."""
    row = db.session.execute(
        select(Element.parent).where(Element.id == element_id)
    ).first()
    if row is None:
        return False, None
    return True, row.parent


def resolve_subtree(
    executor: BatchQueryExecutor,
    branch_id: str,
    root_ids: Iterable[str],
    depth: int | None = None,
    root_element: str = ROOT_ELEMENT,
) -> list[str]:
    """Return ``root_ids`` plus every descendant, in breadth-first order.

    An empty root set means the whole tree: the branch root is used as the
    only seed. ``depth`` limits expansion to that many levels below the
    roots; ``None`` walks to the leaves.
    """
    seeds = list(dict.fromkeys(root_ids)) or [build_id(branch_id, root_element)]
    found = dict.fromkeys(seeds)
    frontier = seeds
    level = 0

    while frontier and (depth is None or level < depth):
        children = executor.find_ids(
            frontier, Element.branch_id == branch_id, key_column=Element.parent,
        )
        frontier = [c for c in dict.fromkeys(children) if c not in found]
        found.update(dict.fromkeys(frontier))
        level += 1

    logger.debug(
        "Resolved subtree of %d root(s) in %s: %d element(s), %d level(s)",
        len(seeds), branch_id, len(found), level,
    )
    return list(found)


def assert_no_cycle(
    branch_id: str,
    element_id: str,
    new_parent_id: str,
    root_elements: Iterable[str] = (ROOT_ELEMENT,),
) -> None:
    """Raise unless moving ``element_id`` under ``new_parent_id`` keeps the tree acyclic.

    Raises:
        OperationError: self-parent, root element moved, or the new parent is
                        a descendant of the moved element.
        NotFoundError: an ancestor of the new parent does not exist.
    """
    if new_parent_id == element_id:
        raise OperationError("Element's parent cannot be self.")
    if local_id(element_id) in set(root_elements):
        raise OperationError(f"Cannot move the root element [{local_id(element_id)}].")

    branch_root = build_id(branch_id, ROOT_ELEMENT)
    visited: set[str] = set()
    current = new_parent_id

    while current is not None and current != branch_root:
        if current == element_id:
            raise OperationError(
                f"A circular reference would exist in the model; element "
                f"[{local_id(new_parent_id)}] cannot become the parent of element "
                f"[{local_id(element_id)}]."
            )
        if current in visited:
            raise OperationError(
                f"Ancestor chain of element [{local_id(new_parent_id)}] loops at "
                f"[{local_id(current)}]."
            )
        visited.add(current)

        found, parent = _parent_of(current)
        if not found:
            raise NotFoundError("Parent element", local_id(current))
        current = parent


def find_root_path(branch_id: str, element_id: str) -> list[str]:
    """``element_id`` followed by its ancestors, ending at the branch root."""
    branch_root = build_id(branch_id, ROOT_ELEMENT)
    path: list[str] = []
    current = element_id

    while current is not None:
        if current in path:
            raise DataFormatError(
                f"Circular parent reference at element [{local_id(current)}]."
            )
        found, parent = _parent_of(current)
        if not found:
            raise NotFoundError("Element", local_id(current))
        path.append(current)
        if current == branch_root:
            break
        current = parent
    return path
