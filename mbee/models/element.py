"""
Element model: one node of a project's versioned model graph.

Elements form a tree through ``parent`` and carry an optional directed
relationship through ``source``/``target``. All three hold full namespaced
ids (``org:project:branch:local``) and are plain indexed strings rather than
foreign keys, because relationships may point into other projects.

The inverse views (``contains``, ``sourceOf``, ``targetOf``) are never stored;
the element service derives them in batches when they are populated.
"""

from mbee.models import db
from mbee.models.mixins import ArchiveMixin, AuditMixin, isoformat
from mbee.utils.ids import local_id


class Element(ArchiveMixin, AuditMixin, db.Model):
    __tablename__ = "elements"
    __table_args__ = (
        db.Index("ix_elements_branch_parent", "branch_id", "parent"),
        db.Index("ix_elements_branch_archived", "branch_id", "archived"),
    )

    # Fields that may be patched by update()
    VALID_UPDATE_FIELDS = (
        "name", "documentation", "custom", "archived", "parent", "type", "source", "target",
    )
    # Subset allowed in array (bulk) update payloads
    BULK_UPDATE_FIELDS = tuple(f for f in VALID_UPDATE_FIELDS if f != "parent")
    # Fields accepted on create() payloads
    VALID_CREATE_FIELDS = (
        "id", "name", "parent", "source", "target", "documentation", "type", "custom",
        "archived", "sourceNamespace", "targetNamespace",
    )
    # Reference fields that populate may replace with the referenced document
    VALID_POPULATE_FIELDS = (
        "archivedBy", "lastModifiedBy", "createdBy", "parent", "source", "target",
        "project", "contains", "sourceOf", "targetOf",
    )
    # Derived fields that only appear when populated
    VIRTUAL_FIELDS = ("contains", "sourceOf", "targetOf")
    # Document key -> column attribute
    DOCUMENT_COLUMNS = {
        "_id": "id",
        "project": "project_id",
        "branch": "branch_id",
        "parent": "parent",
        "source": "source",
        "target": "target",
        "name": "name",
        "documentation": "documentation",
        "type": "type",
        "custom": "custom",
        "createdBy": "created_by",
        "createdOn": "created_on",
        "lastModifiedBy": "last_modified_by",
        "updatedOn": "updated_on",
        "archived": "archived",
        "archivedBy": "archived_by",
        "archivedOn": "archived_on",
    }

    id = db.Column(db.String(255), primary_key=True)
    project_id = db.Column(db.String(80), nullable=False, index=True)
    branch_id = db.Column(db.String(120), nullable=False, index=True)
    parent = db.Column(db.String(255), nullable=True, index=True)
    source = db.Column(db.String(255), nullable=True, index=True)
    target = db.Column(db.String(255), nullable=True, index=True)
    name = db.Column(db.String(255), nullable=False, default="")
    documentation = db.Column(db.Text, nullable=False, default="")
    type = db.Column(db.String(255), nullable=False, default="")
    custom = db.Column(db.JSON, nullable=False, default=dict)

    @property
    def local_id(self):
        return local_id(self.id)

    def to_dict(self):
        """Raw stored document with namespaced ids."""
        return {
            "_id": self.id,
            "id": self.local_id,
            "project": self.project_id,
            "branch": self.branch_id,
            "parent": self.parent,
            "source": self.source,
            "target": self.target,
            "name": self.name,
            "documentation": self.documentation,
            "type": self.type,
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
        return f"<Element {self.id}>"
