"""
WSGI / Flask-Migrate entry point.

Usage:
    flask --app wsgi db upgrade
    flask --app wsgi create-user admin@bgf.org "Site Admin" admin --access-code ADMIN-0001
    gunicorn wsgi:app
"""

from bgf import create_app

app = create_app()
