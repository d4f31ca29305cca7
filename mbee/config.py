"""
MBEE
Configuration classes for the Flask app factory.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name]())
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'mbee_dev.db')}"


def _database_url():
    # SQLAlchemy 2 only accepts the postgresql:// scheme
    raw = os.getenv("DATABASE_URL", "")
    return raw.replace("postgres://", "postgresql://", 1) if raw else None


class Config:
    """Settings shared by every environment."""

    SECRET_KEY = os.getenv("SECRET_KEY", secrets.token_hex(32))
    DEBUG = False
    TESTING = False

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True}

    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")
    API_AUTH_ENABLED = os.getenv("API_AUTH_ENABLED", "true")

    LOG_LEVEL = os.getenv("LOG_LEVEL")
    LOG_FORMAT = os.getenv("LOG_FORMAT")

    RATELIMIT_ENABLED = True
    ELEMENT_RATE_LIMIT = os.getenv("ELEMENT_RATE_LIMIT", "600 per minute")

    # ── Element engine ──────────────────────────────────────────────────
    DEFAULT_BRANCH = "master"
    # Protected top-of-tree elements seeded in every project branch
    ROOT_ELEMENTS = ("model", "__mbee__", "holding_bin", "undefined")
    # Max keys per IN (...) predicate issued by the batch executor
    ELEMENT_BATCH_SIZE = int(os.getenv("ELEMENT_BATCH_SIZE", "50000"))
    # createOrReplace snapshot files live under DATA_DIR/<org>/<project>/<branch>/
    DATA_DIR = os.getenv("MBEE_DATA_DIR", os.path.join(basedir, "data"))


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url() or _SQLITE_DEV
    # SQLite caps bound parameters at 32766 per statement
    ELEMENT_BATCH_SIZE = int(os.getenv("ELEMENT_BATCH_SIZE", "30000"))
    API_AUTH_ENABLED = os.getenv("API_AUTH_ENABLED", "false")


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", "sqlite:///:memory:")
    SQLALCHEMY_ENGINE_OPTIONS = {}
    ELEMENT_BATCH_SIZE = 30000
    API_AUTH_ENABLED = "false"
    RATELIMIT_ENABLED = False


class ProductionConfig(Config):
    SQLALCHEMY_DATABASE_URI = _database_url()
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        # Bulk element writes run long
        "connect_args": {"options": "-c statement_timeout=120000"},
    }

    def __init__(self):
        if not self.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL environment variable is required in production")


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
