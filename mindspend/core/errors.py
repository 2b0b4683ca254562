"""Failure taxonomy shared by the identity adapter, the stores and the flow.

Adapters raise BackendError with a FailureKind. The flow controller turns
every persistence or identity call into a Result so routers only ever deal
with a success value or a typed failure.
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

BLOCKED_SIGNATURES = ("ERR_BLOCKED_BY_CLIENT", "net::ERR_BLOCKED_BY_CLIENT", "blocked by client")


class FailureKind(str, Enum):
    INVALID_CREDENTIAL = "invalid-credential"
    EMAIL_IN_USE = "email-in-use"
    WEAK_SECRET = "weak-secret"
    INVALID_EMAIL = "invalid-email"
    REQUIRES_FRESH_AUTH = "requires-fresh-auth"
    UNVERIFIED_EMAIL = "unverified-email"
    EXPIRED_LINK = "expired-link"
    NETWORK_BLOCKED = "network-blocked"
    UNKNOWN = "unknown"


MESSAGES = {
    FailureKind.INVALID_CREDENTIAL: "Incorrect email or password.",
    FailureKind.EMAIL_IN_USE: "This email is already registered. Try signing in instead.",
    FailureKind.WEAK_SECRET: "Password should be at least 6 characters.",
    FailureKind.INVALID_EMAIL: "Invalid email address.",
    FailureKind.REQUIRES_FRESH_AUTH:
        "For security, please sign out and sign in again before deleting your account.",
    FailureKind.UNVERIFIED_EMAIL: "Please verify your email address first.",
    FailureKind.EXPIRED_LINK: "This link is invalid or has expired.",
    FailureKind.NETWORK_BLOCKED:
        "A browser extension blocked the request. Disable it for this site and try again.",
    FailureKind.UNKNOWN: "Something went wrong. Please try again.",
}


class BackendError(Exception):
    """An identity or storage failure, tagged with its kind."""

    def __init__(self, kind: FailureKind, message: str = None):
        self.kind = kind
        self.message = message or MESSAGES[kind]
        super().__init__(self.message)


@dataclass
class Failure:
    kind: FailureKind
    message: str


@dataclass
class Result:
    """Outcome of a flow action: ok with a value, or a typed failure."""

    ok: bool
    value: Any = None
    failure: Optional[Failure] = None

    @classmethod
    def success(cls, value: Any = None) -> "Result":
        return cls(ok=True, value=value)

    @classmethod
    def fail(cls, error: BaseException) -> "Result":
        kind = classify_error(error)
        message = error.message if isinstance(error, BackendError) else MESSAGES[kind]
        return cls(ok=False, failure=Failure(kind=kind, message=message))


def is_client_blocked_error(error) -> bool:
    """True when an error looks like a request blocked by a client extension."""
    if not error:
        return False
    if isinstance(error, str):
        text = error
    elif isinstance(error, BaseException):
        text = f"{type(error).__name__} {error}"
    else:
        try:
            text = json.dumps(error)
        except (TypeError, ValueError):
            text = repr(error)
    return any(signature in text for signature in BLOCKED_SIGNATURES)


def classify_error(error: BaseException) -> FailureKind:
    if isinstance(error, BackendError):
        return error.kind
    if is_client_blocked_error(error):
        return FailureKind.NETWORK_BLOCKED
    return FailureKind.UNKNOWN
