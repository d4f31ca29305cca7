"""
Element service layer: find / create / update / createOrReplace / remove / search.

Every public operation takes ``(principal, org_id, project_id, branch_id,
payload, options)`` and:
  - accepts only the ``master`` branch (``DEFAULT_BRANCH``)
  - resolves the owning project and checks the caller's capability
  - runs in one SQLAlchemy transaction: commit on success, rollback on any
    failure, with foreign exceptions normalised by ``capture_error``
  - publishes its domain event through the injected bus after the commit

Rules:
  - db.session.commit() happens only in this file.
  - Every ``IN (...)`` query goes through ``BatchQueryExecutor``.
  - Payload validation runs before any store round trip where possible.
"""

from __future__ import annotations

import logging
import operator
import re
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass, field
from functools import reduce
from typing import Any

from flask import current_app
from sqlalchemy import case, not_, or_, select

from mbee.core.exceptions import (
    DataFormatError,
    MBEEError,
    NotFoundError,
    OperationError,
    PermissionDeniedError,
    capture_error,
)
from mbee.core.validators import validate_element_field, validate_element_id
from mbee.models import db
from mbee.models.element import Element
from mbee.models.mixins import utcnow
from mbee.models.project import Project
from mbee.models.user import User
from mbee.services.batch_query import BatchQueryExecutor
from mbee.services.element_graph import (
    ROOT_ELEMENT,
    assert_no_cycle,
    find_root_path,
    resolve_subtree,
)
from mbee.services.element_options import (
    FIND_OPTIONS,
    REFERENCE_FILTERS,
    REMOVE_OPTIONS,
    SEARCH_OPTIONS,
    WRITE_OPTIONS,
    ElementOptions,
)
from mbee.services.events import (
    ELEMENTS_CREATED,
    ELEMENTS_DELETED,
    ELEMENTS_UPDATED,
    EventEmitter,
    get_event_bus,
)
from mbee.services.permission_service import (
    require_global_admin,
    require_read,
    require_write,
)
from mbee.services.snapshot_store import SnapshotStore
from mbee.utils.ids import ID_DELIMITER, build_id, local_id, parse_id

logger = logging.getLogger(__name__)

UNDEFINED_ELEMENT = "undefined"
DEFAULT_ROOT_ELEMENTS = (ROOT_ELEMENT, "__mbee__", "holding_bin", UNDEFINED_ELEMENT)

_SEARCH_TOKEN_RE = re.compile(r'(-?)"([^"]+)"|(\S+)')


@dataclass
class PendingElement:
    """An element from a create payload whose references are not yet resolved.

    ``fields`` holds the final descriptive values; the ``*_ref`` attributes
    hold namespaced ids that must point at an element in the payload or in
    the store before the element can be inserted.
    """

    id: str
    fields: dict[str, Any] = field(default_factory=dict)
    parent_ref: str | None = None
    source_ref: str | None = None
    target_ref: str | None = None

    def references(self):
        for label, ref in (("Parent", self.parent_ref), ("Source", self.source_ref),
                           ("Target", self.target_ref)):
            if ref:
                yield label, ref

    def to_element(self, project_id: str, branch_id: str, username: str) -> Element:
        now = utcnow()
        archived = bool(self.fields.get("archived", False))
        return Element(
            id=self.id,
            project_id=project_id,
            branch_id=branch_id,
            parent=self.parent_ref,
            source=self.source_ref,
            target=self.target_ref,
            name=self.fields.get("name", ""),
            documentation=self.fields.get("documentation", ""),
            type=self.fields.get("type", ""),
            custom=self.fields.get("custom", {}),
            archived=archived,
            archived_by=username if archived else None,
            archived_on=now if archived else None,
            created_by=username,
            created_on=now,
            last_modified_by=username,
            updated_on=now,
        )


class ElementService:
    """Element graph mutation engine.

    Results are plain documents when ``lean`` is set. Otherwise they are
    ``Element`` instances attached to ``db.session``; the commit expires
    them, so their attributes reload on first access and they are only
    usable inside the app context that made the call. Code that outlives
    the request (the HTTP layer included) asks for ``lean``.

    Args:
        event_bus: Anything with ``emit(name, payload)``.
        snapshots: Where createOrReplace writes its pre-delete snapshot.
        executor: Batched query runner (default batch size when omitted).
        root_elements: Local ids of the protected top-of-tree elements.
        default_branch: The single branch the engine accepts.
    """

    def __init__(
        self,
        event_bus: EventEmitter,
        snapshots: SnapshotStore,
        executor: BatchQueryExecutor | None = None,
        root_elements=DEFAULT_ROOT_ELEMENTS,
        default_branch: str = "master",
    ) -> None:
        self.event_bus = event_bus
        self.snapshots = snapshots
        self.executor = executor or BatchQueryExecutor()
        self.root_elements = tuple(root_elements)
        self.default_branch = default_branch

    # ── Transaction boundary ─────────────────────────────────────────────

    @contextmanager
    def _transaction(self):
        """Yield a list collecting ``(event, payload)`` pairs; emit them after commit."""
        events: list[tuple[str, Any]] = []
        try:
            yield events
            db.session.commit()
        except MBEEError:
            db.session.rollback()
            raise
        except Exception as exc:
            db.session.rollback()
            raise capture_error(exc) from exc

        # The write is committed; a failing subscriber must not turn it into an error
        for name, payload in events:
            try:
                self.event_bus.emit(name, payload)
            except Exception:
                logger.exception("Event subscriber failed for %s", name)

    # ── Shared lookups ───────────────────────────────────────────────────

    def _load_project(self, org_id, project_id, branch_id, include_archived=False) -> Project:
        for label, value in (("Organization", org_id), ("Project", project_id), ("Branch", branch_id)):
            if not isinstance(value, str) or not value:
                raise DataFormatError(f"{label} ID must be a non-empty string.")
        if branch_id != self.default_branch:
            raise DataFormatError(
                f"Only the [{self.default_branch}] branch is supported; got [{branch_id}]."
            )

        project = db.session.get(Project, build_id(org_id, project_id))
        if project is None or (project.archived and not include_archived):
            raise NotFoundError("Project", project_id)
        return project

    def _requested_ids(self, elements, branch: str, allow_empty: bool, action: str) -> list[str]:
        """Normalise a string / list-of-strings element selector to namespaced ids."""
        if elements is None and allow_empty:
            return []
        if isinstance(elements, str):
            requested = [elements]
        elif isinstance(elements, list) and (elements or allow_empty):
            requested = [e.get("id") if isinstance(e, dict) else e for e in elements]
        else:
            raise DataFormatError(f"Invalid input for {action} elements.")
        if not all(isinstance(e, str) and e for e in requested):
            raise DataFormatError(f"Invalid input for {action} elements.")
        return list(dict.fromkeys(build_id(branch, e) for e in requested))

    def _payload_list(self, payload, action: str) -> list[dict]:
        if isinstance(payload, dict):
            items = [payload]
        elif isinstance(payload, list):
            items = payload
        else:
            raise DataFormatError(f"Invalid input for {action} elements.")
        for index, item in enumerate(items, 1):
            if not isinstance(item, dict):
                raise DataFormatError(f"Element #{index} is not an object.")
        return items

    def _element_id(self, raw: dict, index: int, branch: str) -> str:
        if "id" not in raw:
            raise DataFormatError(f"Element #{index} does not have an id.")
        if not isinstance(raw["id"], str):
            raise DataFormatError(f"Element #{index}'s id is not a string.")
        return build_id(branch, raw["id"])

    def _namespaced_ref(
        self, raw: dict, rel: str, index: int, branch: str,
        org_id: str, project_id: str, project_refs: set[str],
    ) -> str:
        """Resolve ``raw[rel]`` (+ optional ``<rel>Namespace``) to a full element id."""
        value = raw[rel]
        if not isinstance(value, str) or not value:
            raise DataFormatError(f"Element #{index}'s {rel} is not a string.")
        validate_element_field(rel, value)
        namespace = raw.get(f"{rel}Namespace")
        if namespace is None:
            return build_id(branch, value)

        if not isinstance(namespace, dict):
            raise DataFormatError(f"Element #{index}'s {rel}Namespace is not an object.")
        for key in ("org", "project", "branch"):
            if not isinstance(namespace.get(key), str) or not namespace[key]:
                raise DataFormatError(f"Element #{index}'s {rel}Namespace is missing a {key}.")
        if namespace["org"] != org_id:
            raise DataFormatError(
                f"Element #{index}'s {rel} cannot reference elements outside its org."
            )
        if namespace["project"] == project_id:
            raise DataFormatError(f"{rel.capitalize()} namespace cannot reference the same project.")

        project_refs.add(build_id(namespace["org"], namespace["project"]))
        return build_id(namespace["org"], namespace["project"], namespace["branch"], local_id(value))

    def _check_project_refs(self, project: Project, project_refs: set[str]) -> None:
        """Referenced projects must be whitelisted by ``project``, exist and be ``internal``."""
        if not project_refs:
            return
        allowed = set(project.project_references or [])
        for ref in sorted(project_refs):
            if ref not in allowed:
                raise OperationError(
                    f"Project [{local_id(ref)}] is not referenced by the project "
                    f"[{local_id(project.id)}]; cross-project relationships are not allowed."
                )
        referenced = list(db.session.execute(
            select(Project).where(Project.id.in_(project_refs), Project.archived.is_(False))
        ).scalars())
        missing = sorted(project_refs - {p.id for p in referenced})
        if missing:
            raise NotFoundError("Project", [local_id(p) for p in missing])
        for ref in sorted(referenced, key=lambda p: p.id):
            if ref.visibility != "internal":
                org, proj = parse_id(ref.id)[:2]
                raise PermissionDeniedError(
                    f"The project [{proj}] in the org [{org}] does not have a visibility of internal."
                )

    def _ordered(self, elements: list[Element], ids: list[str]) -> list[Element]:
        position = {uid: i for i, uid in enumerate(ids)}
        return sorted(elements, key=lambda e: position.get(e.id, len(position)))

    # ── Result shaping ───────────────────────────────────────────────────

    def _present(self, elements: list[Element], opts: ElementOptions):
        if opts.lean:
            return self._documents(elements, opts)
        return elements

    def _documents(self, elements: list[Element], opts: ElementOptions) -> list[dict]:
        docs = [e.to_dict() for e in elements]
        for name in opts.populate:
            self._populate(docs, name)
        if opts.fields:
            docs = [_project_fields(d, opts.fields) for d in docs]
        return docs

    def _populate(self, docs: list[dict], name: str) -> None:
        if name in Element.VIRTUAL_FIELDS:
            column = {
                "contains": Element.parent,
                "sourceOf": Element.source,
                "targetOf": Element.target,
            }[name]
            related = self.executor.find([d["_id"] for d in docs], key_column=column,
                                         order_by=[Element.id])
            grouped: dict[str, list[dict]] = defaultdict(list)
            for e in related:
                grouped[getattr(e, column.key)].append(e.to_dict())
            for d in docs:
                d[name] = grouped.get(d["_id"], [])
            return

        refs = {d[name] for d in docs if d.get(name)}
        if not refs:
            return
        if name in ("parent", "source", "target"):
            loaded = {e.id: e.to_dict() for e in self.executor.find(refs)}
        elif name == "project":
            loaded = {
                p.id: p.to_dict() for p in
                db.session.execute(select(Project).where(Project.id.in_(refs))).scalars()
            }
        else:
            loaded = {
                u.id: u.to_dict() for u in
                db.session.execute(select(User).where(User.id.in_(refs))).scalars()
            }
        for d in docs:
            if d.get(name) in loaded:
                d[name] = loaded[d[name]]

    # ── Query building ───────────────────────────────────────────────────

    def _criteria(self, branch: str, opts: ElementOptions) -> list:
        criteria = [Element.branch_id == branch]
        if not opts.archived:
            criteria.append(Element.archived.is_(False))
        for key, value in opts.filters.items():
            if key.startswith("custom."):
                path = key.split(".")[1:]
                expr = Element.custom[path[0]] if len(path) == 1 else Element.custom[tuple(path)]
                criteria.append(expr.as_string() == value)
            elif key in REFERENCE_FILTERS:
                target = value if value.count(ID_DELIMITER) == 3 else build_id(branch, value)
                criteria.append(getattr(Element, key) == target)
            else:
                criteria.append(getattr(Element, Element.DOCUMENT_COLUMNS[key]) == value)
        return criteria

    def _sort_column(self, opts: ElementOptions):
        if not opts.sort:
            return Element.id, False
        descending = opts.sort.startswith("-")
        return getattr(Element, Element.DOCUMENT_COLUMNS[opts.sort.lstrip("-")]), descending

    # ══════════════════════════════════════════════════════════════════════
    # find
    # ══════════════════════════════════════════════════════════════════════

    def find(self, principal, org_id, project_id, branch_id, elements=None, options=None):
        """Find elements by id, by subtree, by root path, or the whole branch.

        ``elements`` may be omitted, a single id or a list of ids. An empty
        result is a valid answer, not an error.
        """
        opts = ElementOptions.parse(options, FIND_OPTIONS, filters_allowed=True)

        with self._transaction():
            project = self._load_project(org_id, project_id, branch_id, include_archived=opts.archived)
            require_read(project, principal)
            branch = build_id(org_id, project_id, branch_id)
            ids = self._requested_ids(elements, branch, allow_empty=True, action="finding")

            if opts.subtree:
                ids = resolve_subtree(self.executor, branch, ids)
            elif opts.depth:
                ids = resolve_subtree(self.executor, branch, ids, depth=opts.depth)

            if opts.rootpath:
                if len(ids) != 1:
                    raise DataFormatError("Can only perform root path search on a single element.")
                ids = find_root_path(branch, ids[0])

            criteria = self._criteria(branch, opts)
            column, descending = self._sort_column(opts)

            if not ids:
                stmt = select(Element).where(*criteria).order_by(
                    column.desc() if descending else column, Element.id,
                ).offset(opts.skip)
                if opts.limit:
                    stmt = stmt.limit(opts.limit)
                found = list(db.session.execute(stmt).scalars())
            else:
                found = self.executor.find(ids, *criteria)
                attr = column.key
                found.sort(key=lambda e: e.id)
                found.sort(key=lambda e: _sort_value(getattr(e, attr)), reverse=descending)
                end = opts.skip + opts.limit if opts.limit else None
                found = found[opts.skip:end]

            logger.debug("find %s: %d element(s)", branch, len(found))
            result = self._present(found, opts)
        return result

    # ══════════════════════════════════════════════════════════════════════
    # create
    # ══════════════════════════════════════════════════════════════════════

    def create(self, principal, org_id, project_id, branch_id, elements, options=None):
        """Create one element (object payload) or many (list payload)."""
        opts = ElementOptions.parse(options, WRITE_OPTIONS)
        with self._transaction() as events:
            project = self._load_project(org_id, project_id, branch_id)
            created = self._create(principal, project, org_id, project_id, branch_id, elements, events)
            result = self._present(created, opts)
        return result

    def _parse_create_payload(self, items, org_id, project_id, branch) -> tuple[list[PendingElement], set[str]]:
        pending: list[PendingElement] = []
        project_refs: set[str] = set()
        seen: set[str] = set()

        for index, raw in enumerate(items, 1):
            for key in raw:
                if key not in Element.VALID_CREATE_FIELDS:
                    raise DataFormatError(f"Invalid key [{key}].")
            uid = self._element_id(raw, index, branch)
            validate_element_id(raw["id"])
            if uid in seen:
                raise DataFormatError(
                    f"Multiple objects with the same ID [{raw['id']}] exist in the payload."
                )
            seen.add(uid)

            # Absent, null and "" all mean the branch root
            parent = validate_element_field("parent", raw.get("parent") or ROOT_ELEMENT)
            parent_ref = build_id(branch, parent)
            if parent_ref == uid:
                raise OperationError("Element's parent cannot be self.")

            has_source = raw.get("source") is not None
            has_target = raw.get("target") is not None
            if has_source != has_target:
                missing = "target" if has_source else "source"
                raise DataFormatError(f"Element #{index} is missing a {missing} id.")
            for rel in ("source", "target"):
                if raw.get(f"{rel}Namespace") is not None and raw.get(rel) is None:
                    raise DataFormatError(f"Element #{index} is missing a {rel} id.")

            item = PendingElement(id=uid, parent_ref=parent_ref)
            if has_source:
                item.source_ref = self._namespaced_ref(raw, "source", index, branch, org_id, project_id, project_refs)
                item.target_ref = self._namespaced_ref(raw, "target", index, branch, org_id, project_id, project_refs)
                if uid in (item.source_ref, item.target_ref):
                    raise OperationError(f"Element #{index}'s source or target cannot be self.")

            for key in ("name", "documentation", "type", "custom", "archived"):
                if raw.get(key) is not None:
                    item.fields[key] = validate_element_field(key, raw[key])
            pending.append(item)

        return pending, project_refs

    def _create(self, principal, project, org_id, project_id, branch_id, elements, events) -> list[Element]:
        branch = build_id(org_id, project_id, branch_id)
        items = self._payload_list(elements, "creating")
        pending, project_refs = self._parse_create_payload(items, org_id, project_id, branch)

        require_write(project, principal, "create")
        self._check_project_refs(project, project_refs)
        if not pending:
            return []

        ids = [p.id for p in pending]
        existing = self.executor.find_ids(ids)
        if existing:
            raise OperationError(
                "Elements with the following IDs already exist "
                f"[{', '.join(sorted(local_id(e) for e in existing))}]."
            )

        # References to elements created in this same call resolve in memory
        in_payload = set(ids)
        external = {ref for p in pending for _, ref in p.references() if ref not in in_payload}
        found_external = set(self.executor.find_ids(external)) if external else set()
        for p in pending:
            for label, ref in p.references():
                if ref not in in_payload and ref not in found_external:
                    raise NotFoundError(
                        f"{label} element", local_id(ref),
                        message=f"{label} element [{local_id(ref)}] not found.",
                    )

        elements_to_insert = [p.to_element(project.id, branch, principal.id) for p in pending]
        self.executor.insert(elements_to_insert)
        logger.info("Created %d element(s) in %s by %s", len(elements_to_insert), branch, principal.id)

        created = self._ordered(self.executor.find(ids, Element.branch_id == branch), ids)
        events.append((ELEMENTS_CREATED, [e.to_dict() for e in created]))
        return created

    # ══════════════════════════════════════════════════════════════════════
    # update
    # ══════════════════════════════════════════════════════════════════════

    def update(self, principal, org_id, project_id, branch_id, elements, options=None):
        """Patch one element (object payload, may reparent) or many (list payload)."""
        opts = ElementOptions.parse(options, WRITE_OPTIONS)

        bulk = isinstance(elements, list)
        items = self._payload_list(elements, "updating")
        if bulk:
            bulk_allowed = {"id", "sourceNamespace", "targetNamespace", *Element.BULK_UPDATE_FIELDS}
            for raw in items:
                for key in raw:
                    if key not in bulk_allowed:
                        raise OperationError(f"Cannot update the field [{key}] in bulk.")

        with self._transaction() as events:
            project = self._load_project(org_id, project_id, branch_id)
            require_write(project, principal, "update")
            branch = build_id(org_id, project_id, branch_id)

            ids: list[str] = []
            patches: dict[str, dict] = {}
            project_refs: set[str] = set()
            for index, raw in enumerate(items, 1):
                uid = self._element_id(raw, index, branch)
                if uid in patches:
                    raise DataFormatError(
                        f"Multiple objects with the same ID [{raw['id']}] exist in the update."
                    )
                ids.append(uid)
                patches[uid] = self._parse_patch(raw, index, uid, branch, org_id, project_id, project_refs)

            self._check_project_refs(project, project_refs)

            found = self.executor.find(ids, Element.branch_id == branch)
            if len(found) != len(ids):
                found_ids = {e.id for e in found}
                raise NotFoundError("Element", [local_id(i) for i in ids if i not in found_ids])

            refs = {
                v for patch in patches.values() for k, v in patch.items()
                if k in ("source", "target") and v is not None
            }
            existing_refs = set(self.executor.find_ids(refs)) if refs else set()

            for element in found:
                self._apply_patch(element, patches[element.id], existing_refs, branch, principal)

            self.executor.save(found)
            logger.info("Updated %d element(s) in %s by %s", len(found), branch, principal.id)

            updated = self._ordered(found, ids)
            events.append((ELEMENTS_UPDATED, [e.to_dict() for e in updated]))
            result = self._present(updated, opts)
        return result

    def _parse_patch(self, raw, index, uid, branch, org_id, project_id, project_refs) -> dict:
        patch = {}
        for key, value in raw.items():
            if key in ("id", "sourceNamespace", "targetNamespace"):
                continue
            if key not in Element.VALID_UPDATE_FIELDS:
                raise OperationError(f"Element property [{key}] cannot be changed.")
            patch[key] = validate_element_field(key, value)

        for rel in ("source", "target"):
            if raw.get(f"{rel}Namespace") is not None and patch.get(rel) is None:
                raise DataFormatError(f"Element #{index} is missing a {rel} id.")
            if patch.get(rel) is not None:
                patch[rel] = self._namespaced_ref(raw, rel, index, branch, org_id, project_id, project_refs)

        if "parent" in patch:
            if patch["parent"] is None:
                if local_id(uid) != ROOT_ELEMENT:
                    raise DataFormatError(f"Element #{index}'s parent cannot be null.")
            else:
                patch["parent"] = build_id(branch, patch["parent"])
        return patch

    def _apply_patch(self, element: Element, patch: dict, existing_refs: set[str], branch: str, principal) -> None:
        elem_id = local_id(element.id)

        # Unchanged relationships are not updates
        for rel in ("source", "target"):
            if rel in patch and patch[rel] == getattr(element, rel):
                del patch[rel]

        if element.archived and patch.get("archived") is not False and set(patch) - {"archived"}:
            raise OperationError(
                f"The element [{elem_id}] is archived. It must first be unarchived "
                "before performing this operation."
            )

        if "parent" in patch and patch["parent"] != element.parent:
            assert_no_cycle(branch, element.id, patch["parent"], self.root_elements)

        for rel in ("source", "target"):
            if rel not in patch or patch[rel] is None:
                continue
            if patch[rel] == element.id:
                raise OperationError(f"Element's {rel} cannot be self [{elem_id}].")
            if patch[rel] not in existing_refs:
                ref_parts = parse_id(patch[rel])
                raise NotFoundError(
                    f"{rel.capitalize()} element", ref_parts[-1],
                    message=f"The {rel} element [{ref_parts[-1]}] was not found in the "
                            f"project [{ref_parts[1]}].",
                )

        merged_source = patch.get("source", element.source)
        merged_target = patch.get("target", element.target)
        if merged_target and not merged_source:
            raise DataFormatError("If target element is provided, source element is required.")
        if merged_source and not merged_target:
            raise DataFormatError("If source element is provided, target element is required.")

        if "archived" in patch:
            if patch["archived"] and elem_id in self.root_elements:
                raise OperationError(f"Cannot archive the root element [{elem_id}].")
            if patch["archived"] and not element.archived:
                element.archive(principal.id)
            elif not patch["archived"] and element.archived:
                element.unarchive()

        for key, value in patch.items():
            if key != "archived":
                setattr(element, key, value)
        element.last_modified_by = principal.id
        element.updated_on = utcnow()

    # ══════════════════════════════════════════════════════════════════════
    # createOrReplace
    # ══════════════════════════════════════════════════════════════════════

    def create_or_replace(self, principal, org_id, project_id, branch_id, elements, options=None):
        """Delete every payload element that already exists, then create the full payload.

        Global admins only. The replaced documents are written to a snapshot
        file first; the file is discarded after the commit and kept on disk
        (its path logged) when the operation fails.
        """
        opts = ElementOptions.parse(options, WRITE_OPTIONS)
        require_global_admin(principal, "create or replace elements")

        snapshot_path = None
        try:
            with self._transaction() as events:
                project = self._load_project(org_id, project_id, branch_id)
                branch = build_id(org_id, project_id, branch_id)
                items = self._payload_list(elements, "replacing")

                ids: list[str] = []
                for index, raw in enumerate(items, 1):
                    uid = self._element_id(raw, index, branch)
                    if local_id(uid) in self.root_elements:
                        raise OperationError(f"Cannot replace the root element [{raw['id']}].")
                    if uid in ids:
                        raise DataFormatError(
                            f"Multiple objects with the same ID [{raw['id']}] exist in the payload."
                        )
                    ids.append(uid)

                existing = self.executor.find(ids, Element.branch_id == branch)
                if existing:
                    docs = [e.to_dict() for e in existing]
                    snapshot_path = self.snapshots.write(org_id, project_id, branch_id, docs)
                    self.executor.delete([e.id for e in existing])
                    db.session.flush()
                    events.append((ELEMENTS_DELETED, docs))
                    logger.info("Replacing %d existing element(s) in %s", len(existing), branch)

                created = self._create(principal, project, org_id, project_id, branch_id, items, events)
                result = self._present(created, opts)
        except MBEEError:
            if snapshot_path:
                logger.error("createOrReplace failed; element snapshot kept at %s", snapshot_path)
            raise

        if snapshot_path:
            self.snapshots.discard(snapshot_path)
        return result

    # ══════════════════════════════════════════════════════════════════════
    # remove
    # ══════════════════════════════════════════════════════════════════════

    def remove(self, principal, org_id, project_id, branch_id, elements, options=None) -> list[str]:
        """Delete the given elements and their entire subtrees.

        Relationships elsewhere whose source or target was deleted are
        re-pointed at their branch's ``undefined`` element. Returns the
        de-duplicated namespaced ids that were deleted.
        """
        ElementOptions.parse(options, REMOVE_OPTIONS)

        with self._transaction() as events:
            project = self._load_project(org_id, project_id, branch_id)
            require_write(project, principal, "delete")
            branch = build_id(org_id, project_id, branch_id)
            ids = self._requested_ids(elements, branch, allow_empty=False, action="removing")

            found = set(self.executor.find_ids(ids, Element.branch_id == branch))
            missing = [local_id(i) for i in ids if i not in found]
            if missing:
                raise NotFoundError("Element", missing)

            subtree = resolve_subtree(self.executor, branch, ids)
            roots = [local_id(i) for i in subtree if local_id(i) in self.root_elements]
            if roots:
                raise OperationError(f"Cannot delete the root element [{', '.join(roots)}].")

            docs = [e.to_dict() for e in self.executor.find(subtree)]
            count = self.executor.delete(subtree)
            repointed = self._repoint_relationships(subtree)
            logger.info(
                "Removed %d element(s) from %s by %s; %d relationship end(s) re-pointed",
                count, branch, principal.id, repointed,
            )
            events.append((ELEMENTS_DELETED, docs))
        return subtree

    def _repoint_relationships(self, deleted_ids: list[str]) -> int:
        undefined = Element.branch_id + f"{ID_DELIMITER}{UNDEFINED_ELEMENT}"
        count = self.executor.update_where(deleted_ids, Element.source, {"source": undefined})
        count += self.executor.update_where(deleted_ids, Element.target, {"target": undefined})
        return count

    # ══════════════════════════════════════════════════════════════════════
    # search
    # ══════════════════════════════════════════════════════════════════════

    def search(self, principal, org_id, project_id, branch_id, query, options=None):
        """Relevance-ranked text search over name, identifier and documentation.

        Words match any of the three fields; a quoted phrase must match; a
        ``-word`` excludes elements that contain it. Name hits weigh more
        than identifier hits, which weigh more than documentation hits.
        """
        opts = ElementOptions.parse(options, SEARCH_OPTIONS, filters_allowed=True)
        words, phrases, excluded = parse_search_query(query)

        with self._transaction():
            project = self._load_project(org_id, project_id, branch_id, include_archived=opts.archived)
            require_read(project, principal)
            branch = build_id(org_id, project_id, branch_id)

            def matches(term):
                pattern = f"%{_escape_like(term)}%"
                return (
                    Element.name.ilike(pattern, escape="\\"),
                    Element.id.ilike(f"{_escape_like(branch)}{ID_DELIMITER}{pattern}", escape="\\"),
                    Element.documentation.ilike(pattern, escape="\\"),
                )

            criteria = self._criteria(branch, opts)
            if words:
                criteria.append(or_(*(cond for w in words for cond in matches(w))))
            for phrase in phrases:
                criteria.append(or_(*matches(phrase)))
            for term in excluded:
                criteria.append(not_(or_(*matches(term))))

            score_parts = []
            for term in words + phrases:
                name_hit, id_hit, doc_hit = matches(term)
                score_parts.append(
                    case((name_hit, 3), else_=0)
                    + case((id_hit, 2), else_=0)
                    + case((doc_hit, 1), else_=0)
                )
            score = reduce(operator.add, score_parts)
            order = [score.desc(), Element.id]
            if opts.sort:
                column, descending = self._sort_column(opts)
                order.insert(0, column.desc() if descending else column)

            stmt = select(Element).where(*criteria).order_by(*order).offset(opts.skip)
            if opts.limit:
                stmt = stmt.limit(opts.limit)
            found = list(db.session.execute(stmt).scalars())
            logger.debug("search %s for %r: %d element(s)", branch, query, len(found))
            result = self._present(found, opts)
        return result


# ── Module helpers ────────────────────────────────────────────────────────


def parse_search_query(query) -> tuple[list[str], list[str], list[str]]:
    """Split a query into ``(words, phrases, excluded)``."""
    if not isinstance(query, str) or not query.strip():
        raise DataFormatError("A search query is required.")
    words, phrases, excluded = [], [], []
    for negated, phrase, word in _SEARCH_TOKEN_RE.findall(query):
        if phrase:
            (excluded if negated else phrases).append(phrase)
        elif word.startswith("-") and len(word) > 1:
            excluded.append(word[1:])
        elif word != "-":
            words.append(word)
    if not words and not phrases:
        raise DataFormatError("A search query needs at least one term that is not excluded.")
    return words, phrases, excluded


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _sort_value(value):
    # None sorts first; mixed types never meet because each column has one type
    return (value is not None, value if value is not None else "")


def _project_fields(doc: dict, fields: list[str]) -> dict:
    include = [f for f in fields if not f.startswith("-")]
    exclude = {f[1:] for f in fields if f.startswith("-")}
    if include:
        doc = {k: v for k, v in doc.items() if k in include or k in ("_id", "id")}
    return {k: v for k, v in doc.items() if k not in exclude or k == "_id"}


def get_element_service() -> ElementService:
    """Build an engine wired to the current app's config and event bus."""
    cfg = current_app.config
    return ElementService(
        event_bus=get_event_bus(),
        snapshots=SnapshotStore(cfg["DATA_DIR"]),
        executor=BatchQueryExecutor(cfg["ELEMENT_BATCH_SIZE"]),
        root_elements=cfg["ROOT_ELEMENTS"],
        default_branch=cfg["DEFAULT_BRANCH"],
    )
