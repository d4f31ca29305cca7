"""
ElementService.create tests.

Covers:
    - single and bulk creation, default parent, audit fields, payload order
    - references resolved inside the payload and against the store
    - cross-project relationships through sourceNamespace/targetNamespace
    - payload validation (keys, ids, pairing, self-parent, duplicates)
    - permission gate, unsupported branch, missing project
    - events published only after a successful commit
"""

import pytest

from mbee.core.exceptions import (
    DataFormatError,
    NotFoundError,
    OperationError,
    PermissionDeniedError,
)
from mbee.models import db
from mbee.models.element import Element
from mbee.services.element_service import ElementService
from mbee.services.events import ELEMENTS_CREATED

BRANCH_ID = "acme:rocket:master"


def _create(service, principal, payload, options=None):
    return service.create(principal, "acme", "rocket", "master", payload, options)


def _count():
    return db.session.query(Element).count()


class TestCreateSingle:
    def test_child_of_model(self, service, project, alice, fetch_element):
        created = _create(service, alice, {"id": "e1", "parent": "model", "name": "Widget"})

        assert len(created) == 1
        assert created[0].id == f"{BRANCH_ID}:e1"
        assert created[0].parent == f"{BRANCH_ID}:model"
        assert created[0].name == "Widget"

        found = service.find(alice, "acme", "rocket", "master", "e1")
        assert [e.id for e in found] == [f"{BRANCH_ID}:e1"]
        assert found[0].parent == f"{BRANCH_ID}:model"

    def test_parent_defaults_to_model(self, service, project, alice):
        created = _create(service, alice, {"id": "e1"})
        assert created[0].parent == f"{BRANCH_ID}:model"

    @pytest.mark.parametrize("parent", ["", None])
    def test_empty_parent_defaults_to_model(self, service, project, alice, fetch_element, parent):
        _create(service, alice, {"id": "e1", "parent": parent})
        assert fetch_element("e1").parent == f"{BRANCH_ID}:model"

    def test_audit_fields_set(self, service, project, alice):
        created = _create(service, alice, {"id": "e1", "archived": True}, {"lean": True})
        doc = created[0]
        assert doc["createdBy"] == "alice"
        assert doc["lastModifiedBy"] == "alice"
        assert doc["createdOn"] is not None
        assert doc["archived"] is True
        assert doc["archivedBy"] == "alice"

    def test_descriptive_fields_round_trip(self, service, project, alice):
        payload = {
            "id": "e1", "name": "Pump", "documentation": "Moves water",
            "type": "Block", "custom": {"mass": "12", "tags": ["a"]},
        }
        created = _create(service, alice, payload, {"lean": True})[0]
        found = service.find(alice, "acme", "rocket", "master", "e1", {"lean": True})[0]
        assert found == created
        assert found["custom"] == {"mass": "12", "tags": ["a"]}


class TestCreateBulk:
    def test_preserves_payload_order(self, service, project, alice):
        created = _create(service, alice, [{"id": "c"}, {"id": "a"}, {"id": "b"}])
        assert [e.local_id for e in created] == ["c", "a", "b"]

    def test_references_inside_payload(self, service, project, alice, fetch_element):
        _create(service, alice, [
            {"id": "child", "parent": "pkg"},
            {"id": "pkg"},
            {"id": "rel", "parent": "pkg", "source": "child", "target": "pkg"},
        ])
        assert fetch_element("child").parent == f"{BRANCH_ID}:pkg"
        rel = fetch_element("rel")
        assert rel.source == f"{BRANCH_ID}:child"
        assert rel.target == f"{BRANCH_ID}:pkg"

    def test_references_existing_elements(self, service, project, alice, make_element, fetch_element):
        make_element("e1")
        make_element("e2")
        _create(service, alice, {"id": "rel1", "source": "e1", "target": "e2"})
        assert fetch_element("rel1").target == f"{BRANCH_ID}:e2"

    def test_empty_list_creates_nothing(self, service, project, alice, events):
        assert _create(service, alice, []) == []
        assert events.emitted == []

    def test_batched_insert_over_batch_size(self, service, project, alice):
        before = _count()
        created = _create(service, alice, [{"id": f"e{i}"} for i in range(7)])
        assert len(created) == 7
        assert _count() == before + 7


class TestCreateMissingReferences:
    def test_missing_target_named(self, service, project, alice, make_element):
        make_element("e1")
        before = _count()
        with pytest.raises(NotFoundError) as exc:
            _create(service, alice, {"id": "rel1", "source": "e1", "target": "e2"})
        assert "e2" in exc.value.message
        assert exc.value.resource_ids == ["e2"]
        assert _count() == before

    def test_missing_parent(self, service, project, alice):
        with pytest.raises(NotFoundError) as exc:
            _create(service, alice, {"id": "e1", "parent": "ghost"})
        assert "Parent element [ghost] not found." == exc.value.message

    def test_whole_payload_rolled_back(self, service, project, alice, fetch_element):
        with pytest.raises(NotFoundError):
            _create(service, alice, [{"id": "ok"}, {"id": "bad", "parent": "ghost"}])
        assert fetch_element("ok") is None


class TestCreateCrossProject:
    def test_namespaced_source(self, service, project, alice, make_element, fetch_element):
        make_element("ext", branch_id="acme:shared:master")
        make_element("local")
        _create(service, alice, {
            "id": "rel",
            "source": "ext",
            "sourceNamespace": {"org": "acme", "project": "shared", "branch": "master"},
            "target": "local",
        })
        assert fetch_element("rel").source == "acme:shared:master:ext"

    def test_project_not_referenced(self, service, project, alice, admin, make_element):
        from mbee.services import project_service

        project_service.create_project("acme", "island", created_by=admin.id)
        make_element("ext", branch_id="acme:island:master")
        make_element("local")
        with pytest.raises(OperationError):
            _create(service, alice, {
                "id": "rel", "source": "ext", "target": "local",
                "sourceNamespace": {"org": "acme", "project": "island", "branch": "master"},
            })

    def test_private_referenced_project_denied(self, service, project, other_project, alice,
                                               make_element, fetch_element):
        other_project.visibility = "private"
        db.session.commit()
        make_element("ext", branch_id="acme:shared:master")
        make_element("local")
        with pytest.raises(PermissionDeniedError) as exc:
            _create(service, alice, {
                "id": "rel", "source": "ext", "target": "local",
                "sourceNamespace": {"org": "acme", "project": "shared", "branch": "master"},
            })
        assert "visibility of internal" in exc.value.message
        assert fetch_element("rel") is None

    def test_same_project_namespace_rejected(self, service, project, alice):
        with pytest.raises(DataFormatError):
            _create(service, alice, {
                "id": "rel", "source": "a", "target": "b",
                "targetNamespace": {"org": "acme", "project": "rocket", "branch": "master"},
            })

    def test_other_org_rejected(self, service, project, alice):
        with pytest.raises(DataFormatError):
            _create(service, alice, {
                "id": "rel", "source": "a", "target": "b",
                "targetNamespace": {"org": "other", "project": "shared", "branch": "master"},
            })

    def test_namespace_missing_branch(self, service, project, alice):
        with pytest.raises(DataFormatError):
            _create(service, alice, {
                "id": "rel", "source": "a", "target": "b",
                "targetNamespace": {"org": "acme", "project": "shared"},
            })


class TestCreateValidation:
    @pytest.mark.parametrize("payload", [
        {"id": "e1", "bogus": 1},
        {"name": "no id"},
        {"id": 5},
        {"id": "Bad Id"},
        {"id": "x" * 37},
        {"id": "e1", "source": "a"},
        {"id": "e1", "target": "a"},
        {"id": "e1", "name": 3},
        {"id": "e1", "custom": "not-an-object"},
        {"id": "e1", "sourceNamespace": {"org": "acme", "project": "shared", "branch": "master"}},
    ])
    def test_data_format_errors(self, service, project, alice, payload):
        with pytest.raises(DataFormatError):
            _create(service, alice, payload)

    def test_payload_must_be_object_or_list(self, service, project, alice):
        with pytest.raises(DataFormatError):
            _create(service, alice, "e1")

    def test_duplicate_ids_in_payload(self, service, project, alice):
        with pytest.raises(DataFormatError):
            _create(service, alice, [{"id": "e1"}, {"id": "e1"}])

    def test_self_parent(self, service, project, alice):
        with pytest.raises(OperationError):
            _create(service, alice, {"id": "e1", "parent": "e1"})

    def test_self_relationship(self, service, project, alice, make_element):
        make_element("e2")
        with pytest.raises(OperationError):
            _create(service, alice, {"id": "e1", "source": "e1", "target": "e2"})

    def test_existing_id_rejected(self, service, project, alice, make_element):
        make_element("e1", name="original")
        with pytest.raises(OperationError) as exc:
            _create(service, alice, [{"id": "e0"}, {"id": "e1", "name": "copy"}])
        assert "[e1]" in exc.value.message

    def test_sequential_duplicate_never_overwrites(self, service, project, alice, fetch_element):
        _create(service, alice, {"id": "e1", "name": "first"})
        with pytest.raises(OperationError):
            _create(service, alice, {"id": "e1", "name": "second"})
        assert fetch_element("e1").name == "first"

    def test_root_ids_already_exist(self, service, project, alice):
        with pytest.raises(OperationError):
            _create(service, alice, {"id": "model"})


class TestCreateGate:
    def test_read_only_user_denied(self, service, project, bob):
        with pytest.raises(PermissionDeniedError):
            _create(service, bob, {"id": "e1"})

    def test_admin_allowed_without_grant(self, service, project, admin):
        assert len(_create(service, admin, {"id": "e1"})) == 1

    def test_non_master_branch(self, service, project, alice):
        with pytest.raises(DataFormatError):
            service.create(alice, "acme", "rocket", "dev", {"id": "e1"})

    def test_missing_project(self, service, project, alice):
        with pytest.raises(NotFoundError):
            service.create(alice, "acme", "nope", "master", {"id": "e1"})

    def test_invalid_option(self, service, project, alice):
        with pytest.raises(DataFormatError):
            _create(service, alice, {"id": "e1"}, {"subtree": True})


class TestCreateEvents:
    def test_created_event_carries_documents(self, service, project, alice, events):
        _create(service, alice, [{"id": "e1"}, {"id": "e2"}])
        assert events.names() == [ELEMENTS_CREATED]
        payload = events.payload(ELEMENTS_CREATED)[0]
        assert [d["_id"] for d in payload] == [f"{BRANCH_ID}:e1", f"{BRANCH_ID}:e2"]

    def test_no_event_on_failure(self, service, project, alice, events):
        with pytest.raises(NotFoundError):
            _create(service, alice, {"id": "e1", "parent": "ghost"})
        assert events.emitted == []

    def test_failing_subscriber_does_not_fail_the_call(self, project, alice, snapshots, fetch_element):
        class FailingBus:
            def emit(self, name, payload):
                raise RuntimeError("subscriber failed")

        service = ElementService(event_bus=FailingBus(), snapshots=snapshots)
        created = _create(service, alice, {"id": "e1"})

        assert [e.id for e in created] == [f"{BRANCH_ID}:e1"]
        assert fetch_element("e1") is not None


class TestCreateLeanOptions:
    def test_fields_projection(self, service, project, alice):
        doc = _create(service, alice, {"id": "e1", "name": "n"}, {"lean": True, "fields": ["name"]})[0]
        assert set(doc) == {"_id", "id", "name"}

    def test_populate_parent(self, service, project, alice):
        doc = _create(service, alice, {"id": "e1"}, {"lean": True, "populate": ["parent"]})[0]
        assert doc["parent"]["_id"] == f"{BRANCH_ID}:model"

    def test_unknown_populate_field(self, service, project, alice):
        with pytest.raises(OperationError):
            _create(service, alice, {"id": "e1"}, {"populate": ["nope"]})

    def test_lean_result_is_detached_from_session(self, service, project, alice):
        doc = _create(service, alice, {"id": "e1", "name": "n"}, {"lean": True})[0]
        db.session.expunge_all()
        assert isinstance(doc, dict)
        assert doc["name"] == "n"

    def test_non_lean_result_reloads_after_commit(self, service, project, alice):
        element = _create(service, alice, {"id": "e1", "name": "n"})[0]
        assert isinstance(element, Element)
        assert db.session.object_session(element) is db.session()
        assert element.name == "n"
