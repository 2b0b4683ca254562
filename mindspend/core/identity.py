"""Email + password accounts, email verification and account deletion.

This is the identity collaborator the rest of the app talks to. Failures are
raised as BackendError with a FailureKind; provider-specific details never
leave this module.

Passwords are stored as PBKDF2-SHA256 hashes. Verification links carry an
itsdangerous token that expires after VERIFY_MAX_AGE seconds.
"""

import hashlib
import hmac
import os
import re
import sqlite3
from datetime import datetime, timezone
from typing import Optional, Protocol

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from mindspend import config
from mindspend.core.errors import BackendError, FailureKind
from mindspend.db.database import get_connection
from mindspend.db.models import Account
from mindspend.logging_setup import get_logger

logger = get_logger("mindspend.identity")

MIN_PASSWORD_LENGTH = 6
VERIFY_MAX_AGE = 60 * 60 * 24 * 3  # 3 days
PBKDF2_ITERATIONS = 200_000

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class EmailSender(Protocol):
    def send(self, to: str, subject: str, body: str) -> None:
        ...


class LoggingEmailSender:
    """Default sender: writes the message to the log instead of mailing it."""

    def __init__(self):
        self.outbox = []

    def send(self, to: str, subject: str, body: str) -> None:
        self.outbox.append((to, subject, body))
        logger.info("Email to %s: %s\n%s", to, subject, body)


_sender: EmailSender = LoggingEmailSender()


def get_email_sender() -> EmailSender:
    return _sender


def set_email_sender(sender: EmailSender) -> None:
    global _sender
    _sender = sender


def _hash_password(password: str, salt: bytes = None) -> str:
    salt = salt or os.urandom(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt, PBKDF2_ITERATIONS)
    return f"{salt.hex()}${digest.hex()}"


def _check_password(password: str, stored: str) -> bool:
    salt_hex, _, digest_hex = stored.partition("$")
    candidate = _hash_password(password, bytes.fromhex(salt_hex))
    return hmac.compare_digest(candidate.partition("$")[2], digest_hex)


def _verify_signer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(config.secret_key(), salt="verify-email")


def _normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def _from_row(row) -> Account:
    return Account(
        id=row["id"],
        email=row["email"],
        display_name=row["display_name"],
        photo_url=row["photo_url"],
        email_verified=bool(row["email_verified"]),
        provider=row["provider"] or "password",
        created_at=row["created_at"],
    )


def get_account(account_id: int) -> Optional[Account]:
    """Return an account by ID, or None if not found."""
    conn = get_connection()
    try:
        row = conn.execute("SELECT * FROM accounts WHERE id = ?", (account_id,)).fetchone()
        return _from_row(row) if row else None
    finally:
        conn.close()


def sign_up(email: str, password: str, display_name: str = None) -> Account:
    """Create an unverified account and send it a verification link."""
    email = _normalize_email(email)
    if not _EMAIL_RE.match(email):
        raise BackendError(FailureKind.INVALID_EMAIL)
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise BackendError(FailureKind.WEAK_SECRET)

    conn = get_connection()
    try:
        cursor = conn.execute(
            "INSERT INTO accounts (email, display_name, password_hash) VALUES (?, ?, ?)",
            (email, display_name or None, _hash_password(password)),
        )
        conn.commit()
        account_id = cursor.lastrowid
    except sqlite3.IntegrityError:
        raise BackendError(FailureKind.EMAIL_IN_USE)
    finally:
        conn.close()

    account = get_account(account_id)
    send_verification(account)
    logger.info("Account %s created", account_id)
    return account


def sign_in(email: str, password: str) -> Account:
    email = _normalize_email(email)
    if not email or not password:
        raise BackendError(FailureKind.INVALID_CREDENTIAL, "Please enter email and password.")
    conn = get_connection()
    try:
        row = conn.execute("SELECT * FROM accounts WHERE email = ?", (email,)).fetchone()
    finally:
        conn.close()
    if not row or not _check_password(password, row["password_hash"]):
        raise BackendError(FailureKind.INVALID_CREDENTIAL)
    return _from_row(row)


def verification_token(account: Account) -> str:
    return _verify_signer().dumps({"uid": account.id, "email": account.email})


def verification_link(account: Account) -> str:
    return f"{config.base_url()}/auth/action?mode=verifyEmail&oobCode={verification_token(account)}"


def send_verification(account: Account) -> None:
    get_email_sender().send(
        account.email,
        "Verify your email",
        f"Click the link to verify your account:\n{verification_link(account)}",
    )


def verify_email(token: str) -> Account:
    """Mark the account named by a verification token as verified."""
    try:
        payload = _verify_signer().loads(token, max_age=VERIFY_MAX_AGE)
    except SignatureExpired:
        raise BackendError(FailureKind.EXPIRED_LINK, "This verification link has expired.")
    except BadSignature:
        raise BackendError(FailureKind.EXPIRED_LINK)

    account = get_account(payload.get("uid"))
    if account is None or account.email != payload.get("email"):
        raise BackendError(FailureKind.EXPIRED_LINK)
    conn = get_connection()
    try:
        conn.execute("UPDATE accounts SET email_verified = 1 WHERE id = ?", (account.id,))
        conn.commit()
    finally:
        conn.close()
    account.email_verified = True
    return account


def needs_verification(account: Account) -> bool:
    return account.provider == "password" and not account.email_verified


def delete_account(account: Account, signed_in_at: datetime, now: datetime = None) -> None:
    """Delete an account with its profile document and purchase history.

    Requires a recent sign-in: sessions older than the fresh-auth window
    fail with requires-fresh-auth.
    """
    now = now or datetime.now(timezone.utc)
    if (now - signed_in_at).total_seconds() > config.fresh_auth_seconds():
        raise BackendError(FailureKind.REQUIRES_FRESH_AUTH)
    conn = get_connection()
    try:
        conn.execute("DELETE FROM purchases WHERE account_id = ?", (account.id,))
        conn.execute("DELETE FROM user_profiles WHERE account_id = ?", (account.id,))
        conn.execute("DELETE FROM accounts WHERE id = ?", (account.id,))
        conn.commit()
    finally:
        conn.close()
    logger.info("Account %s deleted", account.id)
