"""Organization model: top-level namespace for projects."""

from mbee.models import db
from mbee.models.mixins import ArchiveMixin, AuditMixin, isoformat


class Organization(ArchiveMixin, AuditMixin, db.Model):
    __tablename__ = "organizations"

    id = db.Column(db.String(36), primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    permissions = db.Column(db.JSON, nullable=False, default=dict)
    custom = db.Column(db.JSON, nullable=False, default=dict)

    projects = db.relationship("Project", back_populates="org", lazy="dynamic")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "permissions": self.permissions or {},
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
        return f"<Organization {self.id}>"
