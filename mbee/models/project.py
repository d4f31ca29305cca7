"""Project model: owner of element branches, permissions and reference whitelist."""

from mbee.models import db
from mbee.models.mixins import ArchiveMixin, AuditMixin, isoformat
from mbee.utils.ids import local_id


class Project(ArchiveMixin, AuditMixin, db.Model):
    """A project inside an organization.

    ``id`` is namespaced (``org:project``). ``permissions`` maps a username
    to a list of capabilities (``read``/``write``/``admin``);
    ``project_references`` lists the namespaced ids of projects whose
    elements this project's elements may point at.
    """

    __tablename__ = "projects"

    VALID_VISIBILITIES = ("internal", "private")

    id = db.Column(db.String(80), primary_key=True)
    org_id = db.Column(
        db.String(36),
        db.ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = db.Column(db.String(255), nullable=False)
    visibility = db.Column(db.String(20), nullable=False, default="private")
    permissions = db.Column(db.JSON, nullable=False, default=dict)
    project_references = db.Column(db.JSON, nullable=False, default=list)
    custom = db.Column(db.JSON, nullable=False, default=dict)

    org = db.relationship("Organization", back_populates="projects")

    def capabilities_for(self, username):
        return list((self.permissions or {}).get(username, []))

    def to_dict(self):
        return {
            "id": local_id(self.id),
            "org": self.org_id,
            "name": self.name,
            "visibility": self.visibility,
            "permissions": self.permissions or {},
            "projectReferences": [local_id(p) for p in (self.project_references or [])],
            "custom": self.custom or {},
            "createdBy": self.created_by,
            "createdOn": isoformat(self.created_on),
            "lastModifiedBy": self.last_modified_by,
            "updatedOn": isoformat(self.updated_on),
            "archived": self.archived,
            "archivedBy": self.archived_by,
            "archivedOn": isoformat(self.archived_on),
        }

    def __repr__(self):
        return f"<Project {self.id}>"
