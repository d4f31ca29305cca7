"""element_graph_tables

Create `organizations`, `projects`, `users` and `elements` tables.

Revision ID: a1b2c3d4e501
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "a1b2c3d4e501"
down_revision = None
branch_labels = None
depends_on = None


def _audit_columns():
    return [
        sa.Column("archived", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("archived_by", sa.String(length=36), nullable=True),
        sa.Column("archived_on", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by", sa.String(length=36), nullable=True),
        sa.Column("created_on", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_modified_by", sa.String(length=36), nullable=True),
        sa.Column("updated_on", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing_tables = set(inspector.get_table_names())

    if "organizations" not in existing_tables:
        op.create_table(
            "organizations",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("permissions", sa.JSON(), nullable=False),
            sa.Column("custom", sa.JSON(), nullable=False),
            *_audit_columns(),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_organizations_archived", "organizations", ["archived"])

    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("admin", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("fname", sa.String(length=100), nullable=True),
            sa.Column("lname", sa.String(length=100), nullable=True),
            sa.Column("email", sa.String(length=255), nullable=True),
            sa.Column("custom", sa.JSON(), nullable=False),
            *_audit_columns(),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_users_archived", "users", ["archived"])

    if "projects" not in existing_tables:
        op.create_table(
            "projects",
            sa.Column("id", sa.String(length=80), nullable=False),
            sa.Column("org_id", sa.String(length=36), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("visibility", sa.String(length=20), nullable=False, server_default="private"),
            sa.Column("permissions", sa.JSON(), nullable=False),
            sa.Column("project_references", sa.JSON(), nullable=False),
            sa.Column("custom", sa.JSON(), nullable=False),
            *_audit_columns(),
            sa.ForeignKeyConstraint(["org_id"], ["organizations.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_projects_org_id", "projects", ["org_id"])
        op.create_index("ix_projects_archived", "projects", ["archived"])

    if "elements" not in existing_tables:
        op.create_table(
            "elements",
            sa.Column("id", sa.String(length=255), nullable=False),
            sa.Column("project_id", sa.String(length=80), nullable=False),
            sa.Column("branch_id", sa.String(length=120), nullable=False),
            sa.Column("parent", sa.String(length=255), nullable=True),
            sa.Column("source", sa.String(length=255), nullable=True),
            sa.Column("target", sa.String(length=255), nullable=True),
            sa.Column("name", sa.String(length=255), nullable=False, server_default=""),
            sa.Column("documentation", sa.Text(), nullable=False, server_default=""),
            sa.Column("type", sa.String(length=255), nullable=False, server_default=""),
            sa.Column("custom", sa.JSON(), nullable=False),
            *_audit_columns(),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_elements_project_id", "elements", ["project_id"])
        op.create_index("ix_elements_branch_id", "elements", ["branch_id"])
        op.create_index("ix_elements_parent", "elements", ["parent"])
        op.create_index("ix_elements_source", "elements", ["source"])
        op.create_index("ix_elements_target", "elements", ["target"])
        op.create_index("ix_elements_archived", "elements", ["archived"])
        op.create_index("ix_elements_branch_parent", "elements", ["branch_id", "parent"])
        op.create_index("ix_elements_branch_archived", "elements", ["branch_id", "archived"])


def downgrade():
    op.drop_table("elements")
    op.drop_table("projects")
    op.drop_table("users")
    op.drop_table("organizations")
