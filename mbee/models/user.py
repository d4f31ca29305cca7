"""User model: the principal every engine operation runs as."""

from mbee.models import db
from mbee.models.mixins import ArchiveMixin, AuditMixin, isoformat


class User(ArchiveMixin, AuditMixin, db.Model):
    __tablename__ = "users"

    # The username is the primary key
    id = db.Column(db.String(36), primary_key=True)
    admin = db.Column(db.Boolean, nullable=False, default=False)
    fname = db.Column(db.String(100), nullable=True, default="")
    lname = db.Column(db.String(100), nullable=True, default="")
    email = db.Column(db.String(255), nullable=True)
    custom = db.Column(db.JSON, nullable=False, default=dict)

    @property
    def username(self):
        return self.id

    def to_dict(self):
        return {
            "username": self.id,
            "admin": self.admin,
            "fname": self.fname,
            "lname": self.lname,
            "email": self.email,
            "custom": self.custom or {},
            "createdOn": isoformat(self.created_on),
            "archived": self.archived,
            "archivedOn": isoformat(self.archived_on),
        }

    def __repr__(self):
        return f"<User {self.id}>"
