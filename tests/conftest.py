"""
Shared pytest fixtures for the MBEE test suite.

Provides:
    - app: Flask application (session-scoped, snapshot DATA_DIR in a tmp dir)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - admin / alice / bob / carol: users with global admin, read+write,
      read-only and no capability respectively
    - org / project / other_project: "acme", "acme:rocket" (seeded roots,
      references "acme:shared"), "acme:shared" (internal visibility)
    - events: recording event bus
    - service: ElementService over the recording bus with a batch size of 2,
      so every multi-key query is split into several statements
"""

import pytest

from mbee import create_app
from mbee.models import db as _db
from mbee.models.element import Element
from mbee.models.mixins import utcnow
from mbee.services import project_service
from mbee.services.batch_query import BatchQueryExecutor
from mbee.services.element_service import ElementService
from mbee.services.snapshot_store import SnapshotStore
from mbee.utils.ids import build_id

ORG = "acme"
PROJECT = "rocket"
OTHER_PROJECT = "shared"
BRANCH = "master"
BRANCH_ID = build_id(ORG, PROJECT, BRANCH)
OTHER_BRANCH_ID = build_id(ORG, OTHER_PROJECT, BRANCH)


class RecordingBus:
    """Event bus double: keeps every emitted (name, payload) pair."""

    def __init__(self):
        self.emitted = []

    def emit(self, name, payload):
        self.emitted.append((name, payload))

    def names(self):
        return [name for name, _ in self.emitted]

    def payload(self, name):
        return [p for n, p in self.emitted if n == name]


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app(tmp_path_factory):
    """Create the Flask application once per test session."""
    application = create_app("testing")
    application.config["DATA_DIR"] = str(tmp_path_factory.mktemp("mbee-data"))
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Principals & projects ────────────────────────────────────────────────


@pytest.fixture()
def admin():
    return project_service.create_user("admin", admin=True)


@pytest.fixture()
def alice():
    return project_service.create_user("alice")


@pytest.fixture()
def bob():
    return project_service.create_user("bob")


@pytest.fixture()
def carol():
    return project_service.create_user("carol")


@pytest.fixture()
def org(admin):
    return project_service.create_organization(ORG, name="Acme", created_by=admin.id)


@pytest.fixture()
def other_project(org, admin, alice, bob):
    return project_service.create_project(
        ORG, OTHER_PROJECT, created_by=admin.id,
        permissions={"alice": ["read", "write"], "bob": ["read"]},
        visibility="internal",
    )


@pytest.fixture()
def project(org, other_project, admin, alice, bob, carol):
    return project_service.create_project(
        ORG, PROJECT, name="Rocket", created_by=admin.id,
        permissions={"alice": ["read", "write"], "bob": ["read"]},
        project_references=[OTHER_PROJECT],
    )


@pytest.fixture()
def events():
    return RecordingBus()


@pytest.fixture()
def snapshots(tmp_path):
    return SnapshotStore(str(tmp_path / "data"))


@pytest.fixture()
def service(events, snapshots):
    return ElementService(
        event_bus=events,
        snapshots=snapshots,
        executor=BatchQueryExecutor(batch_size=2),
    )


# ── ORM helper factories (bypass the engine to set arbitrary state) ──────


def _make_element(local, parent="model", branch_id=BRANCH_ID, commit=True, **fields):
    """Insert an element directly; ``parent``/``source``/``target`` are local ids."""
    now = utcnow()
    project_id = branch_id.rsplit(":", 1)[0]
    for rel in ("source", "target"):
        if fields.get(rel) and ":" not in fields[rel]:
            fields[rel] = build_id(branch_id, fields[rel])
    element = Element(
        id=build_id(branch_id, local),
        project_id=project_id,
        branch_id=branch_id,
        parent=build_id(branch_id, parent) if parent else None,
        created_by="admin",
        last_modified_by="admin",
        created_on=now,
        updated_on=now,
        **fields,
    )
    _db.session.add(element)
    if commit:
        _db.session.commit()
    return element


def _get_element(local, branch_id=BRANCH_ID):
    return _db.session.get(Element, build_id(branch_id, local))


@pytest.fixture()
def make_element():
    """Factory fixture: ``make_element("e1", parent="model", name="x")``."""
    return _make_element


@pytest.fixture()
def fetch_element():
    """``fetch_element("e1")`` -> Element or None (reads through the session)."""
    return _get_element
