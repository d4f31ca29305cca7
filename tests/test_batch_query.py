"""
BatchQueryExecutor tests.

The executor must never put more than ``batch_size`` keys into a single
``IN (...)`` predicate; a SQLAlchemy ``before_cursor_execute`` listener
counts the bound parameters of every statement it issues.
"""

import pytest
from sqlalchemy import event

from mbee.models import db
from mbee.models.element import Element
from mbee.services.batch_query import BatchQueryExecutor

BRANCH_ID = "acme:rocket:master"


@pytest.fixture()
def statements(app):
    captured = []

    def _capture(conn, cursor, statement, parameters, context, executemany):
        if "elements" in statement:
            captured.append((statement, parameters))

    engine = db.engine
    event.listen(engine, "before_cursor_execute", _capture)
    yield captured
    event.remove(engine, "before_cursor_execute", _capture)


@pytest.fixture()
def many(project, make_element):
    for i in range(7):
        make_element(f"n{i}", commit=False)
    db.session.commit()
    return [f"{BRANCH_ID}:n{i}" for i in range(7)]


class TestChunks:
    def test_exact_slices(self):
        ex = BatchQueryExecutor(batch_size=3)
        assert list(ex.chunks(range(8))) == [[0, 1, 2], [3, 4, 5], [6, 7]]

    def test_empty(self):
        assert list(BatchQueryExecutor(batch_size=3).chunks([])) == []

    def test_invalid_batch_size(self):
        with pytest.raises(ValueError):
            BatchQueryExecutor(batch_size=0)


class TestFind:
    def test_find_splits_statements(self, many, statements):
        found = BatchQueryExecutor(batch_size=3).find(many)
        assert sorted(e.id for e in found) == sorted(many)
        selects = [s for s, _ in statements if s.lstrip().upper().startswith("SELECT")]
        assert len(selects) == 3

    def test_find_ids_with_criteria(self, many):
        ids = BatchQueryExecutor(batch_size=2).find_ids(many + ["nope"], Element.branch_id == BRANCH_ID)
        assert sorted(ids) == sorted(many)

    def test_key_column(self, many):
        children = BatchQueryExecutor(batch_size=2).find_ids([f"{BRANCH_ID}:model"], key_column=Element.parent)
        assert set(many) <= set(children)


class TestWrites:
    def test_delete_returns_count(self, many):
        removed = BatchQueryExecutor(batch_size=2).delete(many[:5])
        db.session.commit()
        assert removed == 5
        assert db.session.query(Element).filter(Element.id.in_(many)).count() == 2

    def test_update_where(self, many, fetch_element):
        count = BatchQueryExecutor(batch_size=2).update_where(many[:3], Element.id, {"name": "bulk"})
        db.session.commit()
        assert count == 3
        assert fetch_element("n0").name == "bulk"
        assert fetch_element("n5").name == ""

    def test_insert_flushes_every_chunk(self, project):
        new = [
            Element(id=f"{BRANCH_ID}:i{i}", project_id="acme:rocket", branch_id=BRANCH_ID,
                    parent=f"{BRANCH_ID}:model")
            for i in range(5)
        ]
        inserted = BatchQueryExecutor(batch_size=2).insert(new)
        db.session.commit()
        assert len(inserted) == 5
        assert db.session.query(Element).filter(Element.id.like(f"{BRANCH_ID}:i%")).count() == 5
