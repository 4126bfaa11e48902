"""Simple runtime configuration for the Day Todo server.

Control flags are read from environment variables to allow toggling in
development or production without code changes.
"""
import os


def _trueish(v: str | None) -> bool:
    if not v:
        return False
    return v.lower() in ('1', 'true', 'yes', 'on')


# Default SQLite database used when a full DATABASE_URL is not provided in
# the environment. Any async SQLAlchemy URL works here.
DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite+aiosqlite:///./daytodo.db')

# SECRET_KEY signs bearer tokens. The fallback exists so the module can be
# imported by tooling; the server refuses to start while it is in use.
INSECURE_SECRET_KEY = 'CHANGE_ME_IN_ENV_FOR_TESTS'
SECRET_KEY = os.getenv('SECRET_KEY', INSECURE_SECRET_KEY)

try:
    ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv('ACCESS_TOKEN_EXPIRE_MINUTES', str(60 * 24)))
except ValueError:
    ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24

# Single shared credential pair accepted via HTTP Basic auth. When both are
# set, a user row with BASIC_AUTH_USER as username is created on first use so
# tasks created through it have an owner. Leave unset to only accept users
# stored in the database.
BASIC_AUTH_USER = os.getenv('BASIC_AUTH_USER') or None
BASIC_AUTH_PASSWORD = os.getenv('BASIC_AUTH_PASSWORD') or None

# Shared secret expected in the X-Webhook-Secret header of user provisioning
# webhooks. When unset the webhook accepts unsigned deliveries.
WEBHOOK_SECRET = os.getenv('WEBHOOK_SECRET') or None

# Titles longer than this are truncated on create/edit.
MAX_TITLE_LENGTH = 200

# When true, the app is considered to be running in development mode.
# Use DEV_MODE=1 in the environment to get DEBUG level logging.
DEV_MODE = _trueish(os.getenv('DEV_MODE', '0'))

# Optional local overrides: define variables in daytodo/local_config.py to
# extend or override the defaults above without changing versioned config.
try:
    from .local_config import *  # type: ignore  # noqa: F401,F403
except ImportError:
    # No local overrides present; proceed with defaults.
    pass
