"""
MBEE
Element blueprint: HTTP surface of the element engine.

Endpoints summary:
    ELEMENTS  /api/orgs/<org>/projects/<proj>/branches/<branch>/elements
                  GET     find (all, ?ids=a,b or a JSON id array)
                  POST    create many
                  PATCH   update many
                  PUT     create or replace many
                  DELETE  remove many (JSON id array or ?ids=)

    ELEMENT   /api/orgs/<org>/projects/<proj>/branches/<branch>/elements/<id>
                  GET, POST, PATCH, PUT, DELETE   single-element variants

    SEARCH    /api/orgs/<org>/projects/<proj>/branches/<branch>/elements/search?q=
                  GET     relevance-ranked text search

Query-string options (populate, fields, archived, subtree, depth, rootpath,
limit, skip, sort and the equality filters) are coerced here and validated
by the engine. Responses use the public element representation.
"""

import logging

from flask import Blueprint, g, jsonify, request

from mbee.core.exceptions import DataFormatError, MBEEError
from mbee.services.element_service import get_element_service
from mbee.utils.errors import E, api_error, error_response
from mbee.utils.ids import local_id
from mbee.utils.public_data import element_public_data

logger = logging.getLogger(__name__)

element_bp = Blueprint("elements", __name__, url_prefix="/api/orgs/<org_id>/projects/<project_id>")

_BOOL_PARAMS = ("archived", "subtree", "rootpath")
_INT_PARAMS = ("depth", "limit", "skip")
_LIST_PARAMS = ("populate", "fields")


@element_bp.errorhandler(MBEEError)
def _handle_mbee_error(exc):
    return error_response(exc)


# ── Helpers ──────────────────────────────────────────────────────────────────

def _parse_query_options():
    """Coerce query-string values into engine option types.

    Strings (sort, filters) and unknown keys pass through untouched so the
    engine validates them with its own messages.
    """
    options = {}
    for key, raw in request.args.items():
        if key in ("ids", "q", "api_key"):
            continue
        if key in _BOOL_PARAMS:
            if raw.lower() not in ("true", "false"):
                raise DataFormatError(f"The option '{key}' is not a boolean.")
            options[key] = raw.lower() == "true"
        elif key in _INT_PARAMS:
            try:
                options[key] = int(raw)
            except ValueError:
                raise DataFormatError(f"The option '{key}' is not a number.") from None
        elif key in _LIST_PARAMS:
            options[key] = [v.strip() for v in raw.split(",") if v.strip()]
        else:
            options[key] = raw
    return options


def _json_body(required=True):
    payload = request.get_json(silent=True)
    if payload is None and required:
        raise DataFormatError("Request body must be JSON.")
    return payload


def _requested_ids():
    ids = request.args.get("ids")
    if ids:
        return [i.strip() for i in ids.split(",") if i.strip()]
    body = request.get_json(silent=True)
    if isinstance(body, list):
        return body
    return None


def _render(elements, options):
    """Lean documents -> public data."""
    return [
        element_public_data(doc, archived=options.get("archived", False), fields=options.get("fields"))
        for doc in elements
    ]


def _single(payload, element_id):
    """Merge the URL id into a single-element payload; mismatches are rejected."""
    if not isinstance(payload, dict):
        raise DataFormatError("Request body must be a JSON object.")
    if "id" in payload and payload["id"] != element_id:
        raise DataFormatError("Element ID in the body does not match ID in the URL.")
    return {**payload, "id": element_id}


def _one(rendered, element_id):
    if not rendered:
        return api_error(E.NOT_FOUND, f"Element [{element_id}] not found.", details={"missing": [element_id]})
    return jsonify(rendered[0]), 200


# ═══════════════════════════════════════════════════════════════════════════
#  MANY ELEMENTS
# ═══════════════════════════════════════════════════════════════════════════

@element_bp.route("/branches/<branch_id>/elements", methods=["GET"])
def get_elements(org_id, project_id, branch_id):
    options = _parse_query_options()
    found = get_element_service().find(
        g.principal, org_id, project_id, branch_id, _requested_ids(), {**options, "lean": True},
    )
    return jsonify(_render(found, options)), 200


@element_bp.route("/branches/<branch_id>/elements", methods=["POST"])
def post_elements(org_id, project_id, branch_id):
    options = _parse_query_options()
    created = get_element_service().create(
        g.principal, org_id, project_id, branch_id, _json_body(), {**options, "lean": True},
    )
    return jsonify(_render(created, options)), 200


@element_bp.route("/branches/<branch_id>/elements", methods=["PATCH"])
def patch_elements(org_id, project_id, branch_id):
    options = _parse_query_options()
    updated = get_element_service().update(
        g.principal, org_id, project_id, branch_id, _json_body(), {**options, "lean": True},
    )
    return jsonify(_render(updated, options)), 200


@element_bp.route("/branches/<branch_id>/elements", methods=["PUT"])
def put_elements(org_id, project_id, branch_id):
    options = _parse_query_options()
    replaced = get_element_service().create_or_replace(
        g.principal, org_id, project_id, branch_id, _json_body(), {**options, "lean": True},
    )
    return jsonify(_render(replaced, options)), 200


@element_bp.route("/branches/<branch_id>/elements", methods=["DELETE"])
def delete_elements(org_id, project_id, branch_id):
    options = _parse_query_options()
    deleted = get_element_service().remove(
        g.principal, org_id, project_id, branch_id, _requested_ids(), options,
    )
    return jsonify([local_id(i) for i in deleted]), 200


# ═══════════════════════════════════════════════════════════════════════════
#  SEARCH
# ═══════════════════════════════════════════════════════════════════════════

@element_bp.route("/branches/<branch_id>/elements/search", methods=["GET"])
def search_elements(org_id, project_id, branch_id):
    options = _parse_query_options()
    query = request.args.get("q", "")
    found = get_element_service().search(
        g.principal, org_id, project_id, branch_id, query, {**options, "lean": True},
    )
    return jsonify(_render(found, options)), 200


# ═══════════════════════════════════════════════════════════════════════════
#  SINGLE ELEMENT
# ═══════════════════════════════════════════════════════════════════════════

@element_bp.route("/branches/<branch_id>/elements/<element_id>", methods=["GET"])
def get_element(org_id, project_id, branch_id, element_id):
    options = _parse_query_options()
    found = get_element_service().find(
        g.principal, org_id, project_id, branch_id, element_id, {**options, "lean": True},
    )
    rendered = _render(found, options)
    # subtree / rootpath answer with every element they resolved
    if options.get("subtree") or options.get("depth") or options.get("rootpath"):
        return jsonify(rendered), 200
    return _one(rendered, element_id)


@element_bp.route("/branches/<branch_id>/elements/<element_id>", methods=["POST"])
def post_element(org_id, project_id, branch_id, element_id):
    options = _parse_query_options()
    payload = _single(_json_body(required=False) or {}, element_id)
    created = get_element_service().create(
        g.principal, org_id, project_id, branch_id, payload, {**options, "lean": True},
    )
    return _one(_render(created, options), element_id)


@element_bp.route("/branches/<branch_id>/elements/<element_id>", methods=["PATCH"])
def patch_element(org_id, project_id, branch_id, element_id):
    options = _parse_query_options()
    payload = _single(_json_body(), element_id)
    updated = get_element_service().update(
        g.principal, org_id, project_id, branch_id, payload, {**options, "lean": True},
    )
    return _one(_render(updated, options), element_id)


@element_bp.route("/branches/<branch_id>/elements/<element_id>", methods=["PUT"])
def put_element(org_id, project_id, branch_id, element_id):
    options = _parse_query_options()
    payload = _single(_json_body(required=False) or {}, element_id)
    replaced = get_element_service().create_or_replace(
        g.principal, org_id, project_id, branch_id, payload, {**options, "lean": True},
    )
    return _one(_render(replaced, options), element_id)


@element_bp.route("/branches/<branch_id>/elements/<element_id>", methods=["DELETE"])
def delete_element(org_id, project_id, branch_id, element_id):
    options = _parse_query_options()
    deleted = get_element_service().remove(
        g.principal, org_id, project_id, branch_id, element_id, options,
    )
    logger.debug("DELETE %s removed %d element(s)", element_id, len(deleted))
    return jsonify(local_id(deleted[0])), 200
