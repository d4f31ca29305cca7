"""Public (API-facing) representation of element documents.

Stored documents carry fully namespaced ids; the API answers with local
ids. A ``source``/``target`` that lives in another project is rendered as
``{"org", "project", "element"}`` so the caller can still locate it.
Populated references (already replaced by their documents) are rendered
recursively.
"""

from __future__ import annotations

from mbee.utils.ids import ID_DELIMITER, local_id


def _user_public_data(user):
    if isinstance(user, dict):
        return {k: user.get(k) for k in ("username", "fname", "lname", "email", "admin")}
    return user


def _relationship(value, element_project: str):
    if value is None:
        return None
    if isinstance(value, dict):
        return element_public_data(value)
    org, project, *_rest = value.split(ID_DELIMITER)
    if project != element_project:
        return {"org": org, "project": project, "element": local_id(value)}
    return local_id(value)


def element_public_data(doc: dict, archived: bool = False, fields: list[str] | None = None) -> dict:
    """Render one element document for API output.

    Args:
        doc: A document from ``Element.to_dict()``, possibly populated.
        archived: Keep archived children in ``contains``.
        fields: The ``fields`` option; ``-name`` entries exclude.
    """
    org, project = doc["_id"].split(ID_DELIMITER)[:2]

    project_value = doc.get("project")
    if isinstance(project_value, dict):
        project_value = {k: project_value.get(k) for k in ("id", "org", "name", "visibility")}
    else:
        project_value = project

    data = {
        "id": local_id(doc["_id"]),
        "name": doc.get("name"),
        "project": project_value,
        "org": org,
        "branch": local_id(doc["branch"]) if doc.get("branch") else None,
        "parent": _relationship(doc.get("parent"), project),
        "source": _relationship(doc.get("source"), project),
        "target": _relationship(doc.get("target"), project),
        "type": doc.get("type"),
        "documentation": doc.get("documentation"),
        "custom": doc.get("custom") or {},
        "createdOn": doc.get("createdOn"),
        "createdBy": _user_public_data(doc.get("createdBy")),
        "updatedOn": doc.get("updatedOn"),
        "lastModifiedBy": _user_public_data(doc.get("lastModifiedBy")),
        "archived": doc.get("archived"),
    }
    if doc.get("archived"):
        data["archivedOn"] = doc.get("archivedOn")
        data["archivedBy"] = _user_public_data(doc.get("archivedBy"))

    for virtual in ("contains", "sourceOf", "targetOf"):
        related = doc.get(virtual)
        if related is None:
            continue
        if not archived:
            related = [r for r in related if not r.get("archived")]
        data[virtual] = [local_id(r["_id"]) for r in related]

    if fields:
        if all(f.startswith("-") for f in fields):
            for f in fields:
                if f != "-id":
                    data.pop(f[1:], None)
        elif all(not f.startswith("-") for f in fields):
            data = {"id": data["id"], **{f: data.get(f) for f in fields if f != "_id"}}
    return data
