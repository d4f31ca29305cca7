"""
MBEE
Flask Application Factory.

Usage:
    from mbee import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate

from mbee.config import config
from mbee.models import db
from mbee.auth import init_auth
from mbee.middleware.logging_config import configure_logging
from mbee.middleware.rate_limiter import init_rate_limits
from mbee.middleware.timing import init_request_timing
from mbee.services.events import init_event_bus

logger = logging.getLogger(__name__)

migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # no global limit, applied per blueprint
    storage_uri=os.getenv("RATELIMIT_STORAGE_URI", "memory://"),
)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name]())

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Element event bus ────────────────────────────────────────────────
    init_event_bus(app)

    # ── Authentication (sets g.principal) ────────────────────────────────
    init_auth(app)

    # ── Request timing middleware ────────────────────────────────────────
    init_request_timing(app)

    # ── Import all models so Alembic can detect them ─────────────────────
    from mbee.models import element as _element_models            # noqa: F401
    from mbee.models import organization as _organization_models  # noqa: F401
    from mbee.models import project as _project_models            # noqa: F401
    from mbee.models import user as _user_models                  # noqa: F401

    # ── Blueprints ───────────────────────────────────────────────────────
    from mbee.blueprints import ALL_BLUEPRINTS

    for bp in ALL_BLUEPRINTS:
        app.register_blueprint(bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    _register_cli(app)

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "code": "ERR_NOT_FOUND", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error", "code": "ERR_INTERNAL"}, 500

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app


def _register_cli(app):
    from mbee.services import project_service

    @app.cli.command("init-db")
    def init_db_cmd():
        """Create all tables (development shortcut for `flask db upgrade`)."""
        db.create_all()
        logger.info("Database tables created.")

    @app.cli.command("create-user")
    @click.argument("username")
    @click.option("--admin", is_flag=True, help="Grant the global admin flag.")
    @click.option("--email", default=None)
    def create_user_cmd(username, admin, email):
        """Create a user (the username doubles as the principal id)."""
        project_service.create_user(username, admin=admin, email=email)
        click.echo(f"Created user {username}")

    @app.cli.command("create-org")
    @click.argument("org_id")
    @click.option("--name", default=None)
    @click.option("--created-by", default=None)
    def create_org_cmd(org_id, name, created_by):
        """Create an organization."""
        project_service.create_organization(org_id, name=name, created_by=created_by)
        click.echo(f"Created organization {org_id}")

    @app.cli.command("create-project")
    @click.argument("org_id")
    @click.argument("project_id")
    @click.option("--name", default=None)
    @click.option("--created-by", default=None)
    @click.option("--grant", "grants", multiple=True,
                  help="username=cap1,cap2 (repeatable), e.g. alice=read,write")
    @click.option("--reference", "references", multiple=True,
                  help="Local id of a project this project may reference (repeatable).")
    @click.option("--visibility", default="private", type=click.Choice(["private", "internal"]))
    def create_project_cmd(org_id, project_id, name, created_by, grants, references, visibility):
        """Create a project and seed its root elements."""
        permissions = {}
        for grant in grants:
            username, _, caps = grant.partition("=")
            permissions[username] = [c for c in caps.split(",") if c]
        project_service.create_project(
            org_id, project_id, name=name, created_by=created_by, permissions=permissions,
            visibility=visibility, project_references=list(references),
        )
        click.echo(f"Created project {org_id}:{project_id}")
