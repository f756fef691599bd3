"""
Pytest configuration for the entire test suite.

This file configures test database to use SQLite for faster tests.
"""
from django.conf import settings


def pytest_configure():
    """Configure Django settings for tests."""
    # Force SQLite for tests (faster, no Docker dependency)
    settings.DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.sqlite3',
            'NAME': ':memory:',  # In-memory database for speed
        }
    }
    settings.PASSWORD_HASHERS = ['django.contrib.auth.hashers.MD5PasswordHasher']

    # pytest-django sets Django up before this hook runs, so the connection
    # handler may already hold the original settings and a connection; drop
    # both so the SQLite override above takes effect.
    from asgiref.local import Local
    from django.db import connections
    connections.close_all()
    connections._settings = None
    connections.__dict__.pop('settings', None)
    connections._connections = Local(connections.thread_critical)
