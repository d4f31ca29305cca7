"""
Project service: the minimal org / project / user provisioning the element
engine runs against.

Creating a project seeds its master branch with the protected root
elements:

    model
    └── __mbee__
        ├── holding_bin
        └── undefined

``undefined`` is where relationship ends are re-pointed when their
element is removed.
"""

import logging

from mbee.core.exceptions import DataFormatError, OperationError
from mbee.core.validators import validate_org_id, validate_project_id, validate_username
from mbee.models import db
from mbee.models.element import Element
from mbee.models.organization import Organization
from mbee.models.project import Project
from mbee.models.user import User
from mbee.utils.ids import build_id

logger = logging.getLogger(__name__)

# (local id, name, parent local id)
ROOT_ELEMENT_LAYOUT = (
    ("model", "Model", None),
    ("__mbee__", "__mbee__", "model"),
    ("holding_bin", "holding bin", "__mbee__"),
    ("undefined", "undefined element", "__mbee__"),
)


def create_user(username, admin=False, fname="", lname="", email=None):
    validate_username(username)
    if db.session.get(User, username) is not None:
        raise OperationError(f"User [{username}] already exists.")
    user = User(id=username, admin=admin, fname=fname, lname=lname, email=email,
                created_by=username, last_modified_by=username)
    db.session.add(user)
    db.session.commit()
    logger.info("User created: %s (admin=%s)", username, admin)
    return user


def create_organization(org_id, name=None, created_by=None, permissions=None):
    validate_org_id(org_id)
    if db.session.get(Organization, org_id) is not None:
        raise OperationError(f"Organization [{org_id}] already exists.")
    org = Organization(
        id=org_id,
        name=name or org_id,
        permissions=permissions or {},
        created_by=created_by,
        last_modified_by=created_by,
    )
    db.session.add(org)
    db.session.commit()
    logger.info("Organization created: %s", org_id)
    return org


def create_project(
    org_id,
    project_id,
    name=None,
    created_by=None,
    permissions=None,
    visibility="private",
    project_references=None,
    branch="master",
):
    """Create a project and seed its branch with the root elements.

    Args:
        permissions: username -> list of capabilities.
        project_references: Local ids of projects (same org) whose elements
                            this project's relationships may point at.
    """
    validate_project_id(project_id)
    if visibility not in Project.VALID_VISIBILITIES:
        raise DataFormatError(f"Invalid project visibility [{visibility}].")
    if db.session.get(Organization, org_id) is None:
        raise OperationError(f"Organization [{org_id}] does not exist.")

    uid = build_id(org_id, project_id)
    if db.session.get(Project, uid) is not None:
        raise OperationError(f"Project [{project_id}] already exists.")

    project = Project(
        id=uid,
        org_id=org_id,
        name=name or project_id,
        visibility=visibility,
        permissions=permissions or {},
        project_references=[build_id(org_id, p) for p in (project_references or [])],
        created_by=created_by,
        last_modified_by=created_by,
    )
    db.session.add(project)

    branch_id = build_id(uid, branch)
    for local, elem_name, parent in ROOT_ELEMENT_LAYOUT:
        db.session.add(Element(
            id=build_id(branch_id, local),
            project_id=uid,
            branch_id=branch_id,
            parent=build_id(branch_id, parent) if parent else None,
            name=elem_name,
            created_by=created_by,
            last_modified_by=created_by,
        ))

    db.session.commit()
    logger.info("Project created: %s (%d root elements)", uid, len(ROOT_ELEMENT_LAYOUT))
    return project
