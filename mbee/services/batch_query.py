"""
Batched element queries.

No statement issued by the element engine carries more than
``batch_size`` keys in a single ``IN (...)`` predicate. The executor splits
key lists into consecutive chunks, runs one statement per chunk
sequentially inside the caller's transaction, and concatenates the
results. Result order across chunks is not guaranteed.

Store failures propagate as ``SQLAlchemyError``; the engine boundary
turns them into ``DatabaseError`` and rolls the transaction back.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Sequence
from typing import Any

from sqlalchemy import delete, select, update

from mbee.models import db
from mbee.models.element import Element

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 50_000


class BatchQueryExecutor:
    """Run element find/insert/update/delete statements in fixed-size chunks."""

    def __init__(self, batch_size: int = DEFAULT_BATCH_SIZE) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be a positive integer")
        self.batch_size = batch_size

    def chunks(self, keys: Iterable[Any]) -> Iterator[list]:
        """Yield consecutive slices of exactly ``batch_size`` items (last may be smaller)."""
        items = list(keys)
        for start in range(0, len(items), self.batch_size):
            yield items[start:start + self.batch_size]

    def find(
        self,
        keys: Iterable[str],
        *criteria,
        key_column=None,
        order_by: Sequence | None = None,
    ) -> list[Element]:
        """Elements whose ``key_column`` (default: id) is in ``keys``."""
        column = Element.id if key_column is None else key_column
        found: list[Element] = []
        for batch, chunk in enumerate(self.chunks(keys)):
            stmt = select(Element).where(column.in_(chunk), *criteria)
            if order_by:
                stmt = stmt.order_by(*order_by)
            rows = db.session.execute(stmt).scalars().all()
            logger.debug("Batched find #%d: %d keys -> %d elements", batch, len(chunk), len(rows))
            found.extend(rows)
        return found

    def find_ids(self, keys: Iterable[str], *criteria, key_column=None) -> list[str]:
        """Like ``find`` but loads ids only."""
        column = Element.id if key_column is None else key_column
        ids: list[str] = []
        for chunk in self.chunks(keys):
            stmt = select(Element.id).where(column.in_(chunk), *criteria)
            ids.extend(db.session.execute(stmt).scalars().all())
        return ids

    def insert(self, elements: Sequence[Element]) -> list[Element]:
        """Add new elements and flush them chunk by chunk."""
        inserted: list[Element] = []
        for chunk in self.chunks(elements):
            db.session.add_all(chunk)
            db.session.flush()
            inserted.extend(chunk)
        return inserted

    def save(self, elements: Sequence[Element]) -> int:
        """Flush pending changes on already persistent elements, chunk by chunk."""
        count = 0
        for chunk in self.chunks(elements):
            db.session.add_all(chunk)
            db.session.flush()
            count += len(chunk)
        return count

    def update_where(self, keys: Iterable[str], key_column, values: dict) -> int:
        """Apply ``values`` to every element whose ``key_column`` is in ``keys``."""
        count = 0
        for chunk in self.chunks(keys):
            stmt = (
                update(Element)
                .where(key_column.in_(chunk))
                .values(**values)
                .execution_options(synchronize_session="fetch")
            )
            count += db.session.execute(stmt).rowcount or 0
        return count

    def delete(self, keys: Iterable[str]) -> int:
        """Delete elements by id; returns the number of rows removed."""
        count = 0
        for chunk in self.chunks(keys):
            stmt = (
                delete(Element)
                .where(Element.id.in_(chunk))
                .execution_options(synchronize_session="fetch")
            )
            count += db.session.execute(stmt).rowcount or 0
        return count
