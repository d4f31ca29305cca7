"""
Archive Mixin

Adds the ``archived`` / ``archivedBy`` / ``archivedOn`` audit columns shared
by organizations, projects, users and elements. Archived records stay in
the table; default finds exclude them.

Usage:
    class MyModel(ArchiveMixin, db.Model):
        ...

    obj.archive("alice")
    obj.unarchive()
"""

from datetime import datetime, timezone

from mbee.models import db


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ArchiveMixin:
    """Mixin that adds archive (soft delete) support to any SQLAlchemy model."""

    archived = db.Column(db.Boolean, nullable=False, default=False, index=True)
    archived_by = db.Column(db.String(36), nullable=True)
    archived_on = db.Column(db.DateTime(timezone=True), nullable=True)

    def archive(self, username):
        """Mark this record as archived by ``username``."""
        self.archived = True
        self.archived_by = username
        self.archived_on = utcnow()

    def unarchive(self):
        """Restore an archived record."""
        self.archived = False
        self.archived_by = None
        self.archived_on = None


class AuditMixin:
    """createdBy / createdOn / lastModifiedBy / updatedOn columns."""

    created_by = db.Column(db.String(36), nullable=True)
    created_on = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    last_modified_by = db.Column(db.String(36), nullable=True)
    updated_on = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)


def isoformat(value):
    """ISO-8601 in UTC; naive values (as read back from SQLite) are taken as UTC."""
    if not value:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()
