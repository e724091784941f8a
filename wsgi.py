"""
WSGI / Flask-Migrate entry point.

Usage:
    flask --app wsgi db upgrade
    flask --app wsgi create-user --email ... --password ... --role Director
    gunicorn wsgi:app
"""

from constructhub import create_app

app = create_app()
