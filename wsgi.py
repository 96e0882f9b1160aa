"""
WSGI / Flask-Migrate entry point.

Usage:
    flask --app wsgi run
    flask db init       # first time only (creates migrations/)
    flask db migrate -m "description"
    flask db upgrade
"""

from triage import create_app

app = create_app()
