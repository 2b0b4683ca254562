"""Runtime configuration read from environment variables.

Every value is read at call time so tests can set them via os.environ.

Known variables:
    SECRET_KEY                    signing key for cookies and verification links
    MINDSPEND_COOL_OFF_SECONDS    cool-off countdown length (default 10)
    MINDSPEND_HISTORY_LIMIT       default read limit for history listings (default 50)
    MINDSPEND_FRESH_AUTH_SECONDS  max session age for account deletion (default 300)
    MINDSPEND_BASE_URL            base URL used in verification links
"""

import os

DEFAULT_SECRET_KEY = "dev-secret-change-in-production"


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name, "")
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value >= 0 else default


def secret_key() -> str:
    return os.environ.get("SECRET_KEY", DEFAULT_SECRET_KEY)


def cool_off_seconds() -> int:
    return _int_env("MINDSPEND_COOL_OFF_SECONDS", 10)


def history_limit() -> int:
    return _int_env("MINDSPEND_HISTORY_LIMIT", 50) or 50


def fresh_auth_seconds() -> int:
    return _int_env("MINDSPEND_FRESH_AUTH_SECONDS", 300)


def base_url() -> str:
    return os.environ.get("MINDSPEND_BASE_URL", "http://localhost:8000").rstrip("/")
