"""
MBEE
SQLAlchemy database instance shared by all models.

Usage:
    from mbee.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
