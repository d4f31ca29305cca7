"""
Flask-Migrate / Alembic and WSGI entry point.

Usage:
    flask --app wsgi db upgrade
    flask --app wsgi create-user alice --admin
    gunicorn wsgi:app
"""

from mbee import create_app

app = create_app()
