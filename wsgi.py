"""
WSGI / Flask-Migrate entry point.

Usage:
    gunicorn wsgi:app
    flask --app wsgi db migrate -m "description"
    flask --app wsgi create-user buyer@example.com secret --company "Acme"
"""

from rfp_platform import create_app

app = create_app()
