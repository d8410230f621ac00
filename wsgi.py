"""
WSGI and Flask-Migrate / Alembic entry point.

Usage:
    gunicorn wsgi:app
    flask --app wsgi db migrate -m "description"
    flask --app wsgi db upgrade
    flask --app wsgi register-application APP123 "Asha Traders" --branch Mumbai
    flask --app wsgi post-notice <query-id> "Bureau report refreshed"
"""

from query_workflow import create_app

app = create_app()
