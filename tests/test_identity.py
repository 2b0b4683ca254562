from datetime import timedelta
from urllib.parse import parse_qs, urlparse

import pytest

from mindspend.core import identity
from mindspend.core.errors import BackendError, FailureKind
from mindspend.core.history import CloudHistoryStore
from mindspend.core.profiles import CloudProfileStore
from mindspend.db.models import NewPurchaseRecord, Profile


class RecordingSender:
    def __init__(self):
        self.sent = []

    def send(self, to, subject, body):
        self.sent.append((to, subject, body))


@pytest.fixture
def sender():
    previous = identity.get_email_sender()
    recording = RecordingSender()
    identity.set_email_sender(recording)
    yield recording
    identity.set_email_sender(previous)


def _token_from(body: str) -> str:
    link = body.split()[-1]
    return parse_qs(urlparse(link).query)["oobCode"][0]


def _kind(excinfo):
    return excinfo.value.kind


def test_sign_up_sends_verification_link(db, sender):
    account = identity.sign_up("  New@Example.com ", "secret123")
    assert account.email == "new@example.com"
    assert not account.email_verified
    assert identity.needs_verification(account)
    to, subject, body = sender.sent[-1]
    assert to == "new@example.com"
    assert "/auth/action?mode=verifyEmail&oobCode=" in body


def test_sign_up_validation(db, sender):
    with pytest.raises(BackendError) as exc:
        identity.sign_up("not-an-email", "secret123")
    assert _kind(exc) == FailureKind.INVALID_EMAIL
    with pytest.raises(BackendError) as exc:
        identity.sign_up("short@example.com", "12345")
    assert _kind(exc) == FailureKind.WEAK_SECRET


def test_sign_up_twice_is_email_in_use(db, sender):
    identity.sign_up("dup@example.com", "secret123")
    with pytest.raises(BackendError) as exc:
        identity.sign_up("DUP@example.com", "other-secret")
    assert _kind(exc) == FailureKind.EMAIL_IN_USE


def test_sign_in(db, sender):
    created = identity.sign_up("login@example.com", "secret123")
    assert identity.sign_in("login@example.com", "secret123").id == created.id
    with pytest.raises(BackendError) as exc:
        identity.sign_in("login@example.com", "wrong-password")
    assert _kind(exc) == FailureKind.INVALID_CREDENTIAL
    with pytest.raises(BackendError) as exc:
        identity.sign_in("nobody@example.com", "secret123")
    assert _kind(exc) == FailureKind.INVALID_CREDENTIAL


def test_password_is_not_stored_in_clear(db, sender):
    from mindspend.db.database import get_connection
    identity.sign_up("hash@example.com", "secret123")
    conn = get_connection()
    try:
        stored = conn.execute(
            "SELECT password_hash FROM accounts WHERE email = 'hash@example.com'"
        ).fetchone()["password_hash"]
    finally:
        conn.close()
    assert "secret123" not in stored
    assert identity._check_password("secret123", stored)


def test_verify_email(db, sender):
    account = identity.sign_up("verify@example.com", "secret123")
    verified = identity.verify_email(_token_from(sender.sent[-1][2]))
    assert verified.id == account.id
    assert identity.get_account(account.id).email_verified
    assert not identity.needs_verification(identity.get_account(account.id))


def test_verify_email_rejects_tampered_token(db, sender):
    with pytest.raises(BackendError) as exc:
        identity.verify_email("garbage")
    assert _kind(exc) == FailureKind.EXPIRED_LINK


def test_delete_account_requires_recent_sign_in(db, sender, now):
    account = identity.sign_up("stale@example.com", "secret123")
    with pytest.raises(BackendError) as exc:
        identity.delete_account(account, signed_in_at=now - timedelta(hours=1), now=now)
    assert _kind(exc) == FailureKind.REQUIRES_FRESH_AUTH
    assert identity.get_account(account.id) is not None


def test_delete_account_removes_profile_and_history(db, sender, now):
    account = identity.sign_up("gone@example.com", "secret123")
    profile = Profile(hourly_wage=20, monthly_expenses=3000)
    CloudProfileStore(account).save(profile)
    history = CloudHistoryStore(account.id)
    history.create(NewPurchaseRecord.build(10, "lunch", "food", profile, {"timeInMinutes": 30}), now=now)

    identity.delete_account(account, signed_in_at=now - timedelta(seconds=30), now=now)

    assert identity.get_account(account.id) is None
    assert CloudProfileStore(account).load() is None
    assert list(history.list()) == []
