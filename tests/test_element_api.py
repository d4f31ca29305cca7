"""
Element HTTP API tests.

Covers:
    - Caller identification (X-MBEE-User header while auth is disabled)
    - GET / POST / PATCH / PUT / DELETE on the many and single routes
    - Search route
    - Query-string option coercion
    - Error JSON shape and status codes per error type
    - Health endpoints
"""

import pytest

BASE = "/api/orgs/acme/projects/rocket/branches/master/elements"


def _h(user="alice"):
    return {"X-MBEE-User": user}


@pytest.fixture()
def seeded(project, make_element):
    make_element("a", name="Alpha", type="Block")
    make_element("b", parent="a", name="Beta")
    make_element("r", name="Rocket link", source="a", target="b")


# ═════════════════════════════════════════════════════════════════════════════
# Caller identification
# ═════════════════════════════════════════════════════════════════════════════


class TestCaller:
    def test_missing_header(self, client, project):
        res = client.get(BASE)
        assert res.status_code == 401
        assert res.get_json()["code"] == "ERR_UNAUTHORIZED"

    def test_unknown_user(self, client, project):
        assert client.get(BASE, headers=_h("mallory")).status_code == 401

    def test_form_post_rejected(self, client, project):
        res = client.post(BASE, data="id=e1", headers={**_h(), "Content-Type": "application/x-www-form-urlencoded"})
        assert res.status_code == 415


# ═════════════════════════════════════════════════════════════════════════════
# Read
# ═════════════════════════════════════════════════════════════════════════════


class TestGet:
    def test_get_all_excludes_nothing_but_archived(self, client, seeded):
        res = client.get(BASE, headers=_h("bob"))
        assert res.status_code == 200
        ids = [e["id"] for e in res.get_json()]
        assert {"a", "b", "r", "model", "undefined"} <= set(ids)

    def test_get_by_ids_query(self, client, seeded):
        res = client.get(f"{BASE}?ids=b,a", headers=_h())
        assert [e["id"] for e in res.get_json()] == ["a", "b"]

    def test_get_single(self, client, seeded):
        res = client.get(f"{BASE}/r", headers=_h())
        body = res.get_json()
        assert res.status_code == 200
        assert (body["source"], body["target"], body["parent"]) == ("a", "b", "model")

    def test_get_single_missing(self, client, seeded):
        res = client.get(f"{BASE}/ghost", headers=_h())
        assert res.status_code == 404
        assert res.get_json()["details"] == {"missing": ["ghost"]}

    def test_subtree_returns_list(self, client, seeded):
        res = client.get(f"{BASE}/a?subtree=true", headers=_h())
        assert [e["id"] for e in res.get_json()] == ["a", "b"]

    def test_rootpath(self, client, seeded):
        res = client.get(f"{BASE}/b?rootpath=true", headers=_h())
        assert sorted(e["id"] for e in res.get_json()) == ["a", "b", "model"]

    def test_populate_contains(self, client, seeded):
        res = client.get(f"{BASE}/a?populate=contains", headers=_h())
        assert res.get_json()["contains"] == ["b"]

    def test_fields_and_filter(self, client, seeded):
        res = client.get(f"{BASE}?type=Block&fields=name", headers=_h())
        assert res.get_json() == [{"id": "a", "name": "Alpha"}]

    def test_limit_skip(self, client, seeded):
        res = client.get(f"{BASE}?ids=a,b,r&limit=1&skip=1", headers=_h())
        assert [e["id"] for e in res.get_json()] == ["b"]

    def test_bad_boolean(self, client, seeded):
        res = client.get(f"{BASE}?archived=yes", headers=_h())
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_DATA_FORMAT"

    def test_unknown_option(self, client, seeded):
        assert client.get(f"{BASE}?bogus=1", headers=_h()).status_code == 400

    def test_no_read_permission(self, client, seeded):
        res = client.get(BASE, headers=_h("carol"))
        assert res.status_code == 403
        assert res.get_json()["code"] == "ERR_FORBIDDEN"

    def test_unknown_branch(self, client, seeded):
        res = client.get("/api/orgs/acme/projects/rocket/branches/dev/elements", headers=_h())
        assert res.status_code == 400

    def test_unknown_project(self, client, seeded):
        res = client.get("/api/orgs/acme/projects/nope/branches/master/elements", headers=_h())
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"


# ═════════════════════════════════════════════════════════════════════════════
# Write
# ═════════════════════════════════════════════════════════════════════════════


class TestPost:
    def test_create_many(self, client, project):
        res = client.post(BASE, json=[{"id": "p"}, {"id": "c", "parent": "p", "name": "Child"}], headers=_h())
        assert res.status_code == 200
        body = res.get_json()
        assert [e["id"] for e in body] == ["p", "c"]
        assert body[1]["parent"] == "p"
        assert body[1]["createdBy"] == "alice"

    def test_create_single_url_id(self, client, project):
        res = client.post(f"{BASE}/e1", json={"name": "One"}, headers=_h())
        assert res.status_code == 200
        assert res.get_json()["id"] == "e1"

    def test_create_single_id_mismatch(self, client, project):
        res = client.post(f"{BASE}/e1", json={"id": "e2"}, headers=_h())
        assert res.status_code == 400

    def test_create_existing(self, client, seeded):
        res = client.post(BASE, json=[{"id": "a"}], headers=_h())
        assert res.status_code == 403
        assert res.get_json()["code"] == "ERR_OPERATION"

    def test_create_missing_parent(self, client, project):
        res = client.post(BASE, json=[{"id": "e1", "parent": "ghost"}], headers=_h())
        assert res.status_code == 404

    def test_read_only_user(self, client, project):
        res = client.post(BASE, json=[{"id": "e1"}], headers=_h("bob"))
        assert res.status_code == 403
        assert res.get_json()["code"] == "ERR_FORBIDDEN"

    def test_body_required(self, client, project):
        res = client.post(BASE, headers={**_h(), "Content-Type": "application/json"})
        assert res.status_code == 400


class TestPatch:
    def test_update_many(self, client, seeded, fetch_element):
        res = client.patch(BASE, json=[{"id": "a", "name": "A2"}, {"id": "b", "documentation": "doc"}], headers=_h())
        assert res.status_code == 200
        assert fetch_element("a").name == "A2"
        assert fetch_element("b").documentation == "doc"

    def test_update_single_moves_parent(self, client, seeded, make_element):
        make_element("c")
        res = client.patch(f"{BASE}/c", json={"parent": "b"}, headers=_h())
        assert res.status_code == 200
        assert res.get_json()["parent"] == "b"

    def test_cycle_rejected(self, client, seeded):
        res = client.patch(f"{BASE}/a", json={"parent": "b"}, headers=_h())
        assert res.status_code == 403

    def test_update_missing(self, client, seeded):
        res = client.patch(BASE, json=[{"id": "ghost", "name": "x"}], headers=_h())
        assert res.status_code == 404


class TestPut:
    def test_requires_global_admin(self, client, seeded):
        res = client.put(BASE, json=[{"id": "a"}], headers=_h())
        assert res.status_code == 403

    def test_replace(self, client, seeded, fetch_element):
        res = client.put(f"{BASE}/a", json={"name": "Replaced"}, headers=_h("admin"))
        assert res.status_code == 200
        assert res.get_json()["name"] == "Replaced"
        assert fetch_element("a").type == ""


class TestDelete:
    def test_delete_single_returns_id(self, client, seeded, fetch_element):
        res = client.delete(f"{BASE}/b", headers=_h())
        assert res.status_code == 200
        assert res.get_json() == "b"
        assert fetch_element("b") is None

    def test_delete_many_returns_subtree(self, client, seeded):
        res = client.delete(BASE, json=["a"], headers=_h())
        assert sorted(res.get_json()) == ["a", "b"]

    def test_delete_repoints_relationship(self, client, seeded, fetch_element):
        client.delete(f"{BASE}?ids=a", headers=_h())
        assert fetch_element("r").source == "acme:rocket:master:undefined"

    def test_delete_root(self, client, seeded):
        res = client.delete(f"{BASE}/model", headers=_h())
        assert res.status_code == 403
        assert "root element" in res.get_json()["error"]

    def test_delete_missing(self, client, seeded):
        res = client.delete(BASE, json=["ghost"], headers=_h())
        assert res.status_code == 404


class TestSearch:
    def test_ranked_results(self, client, seeded):
        res = client.get(f"{BASE}/search?q=rocket", headers=_h())
        assert res.status_code == 200
        assert [e["id"] for e in res.get_json()] == ["r"]

    def test_empty_query(self, client, seeded):
        assert client.get(f"{BASE}/search", headers=_h()).status_code == 400

    def test_search_rejects_subtree(self, client, seeded):
        assert client.get(f"{BASE}/search?q=a&subtree=true", headers=_h()).status_code == 400


# ═════════════════════════════════════════════════════════════════════════════
# Health
# ═════════════════════════════════════════════════════════════════════════════


class TestHealth:
    def test_ready_without_caller(self, client):
        res = client.get("/api/health")
        assert res.status_code == 200
        assert res.get_json()["status"] == "ok"

    def test_live(self, client):
        res = client.get("/api/health/live")
        assert res.status_code == 200
        assert res.get_json()["checks"]["database"]["status"] == "ok"
