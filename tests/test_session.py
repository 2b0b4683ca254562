from datetime import timedelta

import pytest

from mindspend.core import identity
from mindspend.core.device_storage import GUEST_MODE, PROFILE, DeviceStorage
from mindspend.core.errors import FailureKind
from mindspend.core.history import CloudHistoryStore, DeviceHistoryStore
from mindspend.core.session import (
    COOLOFF, INSIGHTS, PRICE, RESULTS, SETUP, VERIFY_EMAIL, WELCOME, FlowController, FlowState,
    continue_as_guest, ethical_check_due, open_session, parse_price, record_ethical_check,
)
from mindspend.db.database import get_connection
from mindspend.db.models import Profile


class Clock:
    def __init__(self, start):
        self.current = start

    def __call__(self):
        return self.current

    def advance(self, seconds):
        self.current += timedelta(seconds=seconds)


@pytest.fixture
def clock(now):
    return Clock(now)


@pytest.fixture
def guest_flow(db, clock, profile):
    session = continue_as_guest(DeviceStorage("flow-device"))
    flow = FlowController(session, clock=clock)
    flow.complete_setup(profile)
    return flow


def test_parse_price():
    assert parse_price("12.50") == 12.5
    assert parse_price("0") is None
    assert parse_price("-5") is None
    assert parse_price("nan") is None
    assert parse_price("") is None


def test_no_session_selects_no_backend(db):
    session = open_session(DeviceStorage("nobody"))
    assert not session.active
    assert session.history is None


def test_guest_session_uses_device_backend(db):
    session = continue_as_guest(DeviceStorage("guest"))
    assert session.is_guest
    assert isinstance(session.history, DeviceHistoryStore)
    assert session.profile is None


def test_signed_in_session_uses_cloud_backend(db):
    account = identity.sign_up("cloud@example.com", "secret123")
    session = open_session(DeviceStorage("d"), account=account)
    assert isinstance(session.history, CloudHistoryStore)
    assert session.needs_verification
    assert FlowController(session).sync() == VERIFY_EMAIL


def test_sync_routes_to_setup_then_price(db, clock, profile):
    flow = FlowController(continue_as_guest(DeviceStorage("sync")), clock=clock)
    assert flow.sync() == SETUP
    assert flow.complete_setup(profile).ok
    assert flow.state.step == PRICE


def test_sync_without_session_goes_to_welcome(db):
    flow = FlowController(open_session(DeviceStorage("anon")), FlowState(step=RESULTS))
    assert flow.sync() == WELCOME


def test_cool_off_gates_results(guest_flow, clock, monkeypatch):
    monkeypatch.setenv("MINDSPEND_COOL_OFF_SECONDS", "10")
    guest_flow.submit_price(30, "book", "fun")
    assert guest_flow.state.step == COOLOFF
    assert guest_flow.cool_off_remaining() == 10
    clock.advance(4)
    assert not guest_flow.complete_cool_off()
    assert guest_flow.cool_off_remaining() == 6
    clock.advance(6)
    assert guest_flow.complete_cool_off()
    assert guest_flow.state.step == RESULTS


def test_results_save_once_per_price_and_label(guest_flow):
    guest_flow.submit_price(30, "book", "fun")
    guest_flow.complete_cool_off()
    cost, saved = guest_flow.show_results()
    assert cost.time_in_minutes == 90
    assert saved.ok
    _, again = guest_flow.show_results()
    assert again is None
    records = list(guest_flow.session.history.list())
    assert len(records) == 1
    assert records[0].label == "book"
    assert records[0].category == "fun"


def test_new_price_allows_saving_the_same_item_again(guest_flow, clock):
    for _ in range(2):
        guest_flow.submit_price(30, "book")
        guest_flow.complete_cool_off()
        guest_flow.show_results()
        guest_flow.new_price()
        clock.advance(60)
    assert len(list(guest_flow.session.history.list())) == 2
    assert guest_flow.state.step == PRICE


def test_viewing_history_does_not_save(guest_flow):
    guest_flow.submit_price(15, "")
    guest_flow.complete_cool_off()
    _, saved = guest_flow.show_results()
    record_id = saved.value

    assert guest_flow.view_history(record_id).ok
    assert guest_flow.state.viewing_history
    assert guest_flow.display_label == "this purchase"
    _, saved = guest_flow.show_results()
    assert saved is None
    assert len(list(guest_flow.session.history.list())) == 1


def test_view_missing_history_fails(guest_flow):
    result = guest_flow.view_history("missing")
    assert not result.ok
    assert guest_flow.state.step == PRICE


def test_decide_and_delete(guest_flow):
    guest_flow.submit_price(15, "snack", "food")
    guest_flow.complete_cool_off()
    _, saved = guest_flow.show_results()
    assert guest_flow.decide(saved.value, "bought", regret=False).ok
    record = guest_flow.session.history.get(saved.value)
    assert record.decision == "bought"
    assert record.regret is False
    assert not guest_flow.decide(saved.value, "perhaps").ok
    assert guest_flow.delete_record(saved.value).ok
    assert guest_flow.session.history.get(saved.value) is None


def test_load_insights(guest_flow):
    guest_flow.submit_price(15, "snack")
    guest_flow.complete_cool_off()
    guest_flow.show_results()
    guest_flow.open_insights()
    result = guest_flow.load_insights()
    summary, records = result.value
    assert guest_flow.state.step == INSIGHTS
    assert summary.total_checks == 1
    assert len(records) == 1


def test_failed_save_reports_and_keeps_state(guest_flow):
    class Broken:
        def save(self, profile):
            raise RuntimeError("net::ERR_BLOCKED_BY_CLIENT")

    guest_flow.session.profiles = Broken()
    original = guest_flow.session.profile
    result = guest_flow.save_settings(original.copy())
    assert result.failure.kind == FailureKind.NETWORK_BLOCKED
    assert guest_flow.session.profile is original


def test_reset_clears_guest_keys(guest_flow):
    device = guest_flow.session.device
    guest_flow.reset()
    assert device.get_item(GUEST_MODE) is None
    assert device.get_item(PROFILE) is None
    assert guest_flow.state.step == WELCOME
    assert not guest_flow.session.active


def test_logo_reset(guest_flow):
    guest_flow.submit_price(10, "x")
    guest_flow.logo_reset()
    assert guest_flow.state == FlowState(step=PRICE)


def test_flow_state_from_bad_data():
    assert FlowState.from_dict("nope") == FlowState()
    assert FlowState.from_dict({"step": "warp", "price": 3}).step == WELCOME


def test_ethical_check_is_weekly(db, now):
    device = DeviceStorage("ethics")
    assert ethical_check_due(device, now)
    record_ethical_check(device, now)
    assert not ethical_check_due(device, now + timedelta(days=6))
    assert ethical_check_due(device, now + timedelta(days=7, seconds=1))


def test_delete_account_needs_fresh_sign_in(db, clock, profile):
    account = identity.sign_up("del@example.com", "secret123")
    conn = get_connection()
    try:
        conn.execute("UPDATE accounts SET email_verified = 1 WHERE id = ?", (account.id,))
        conn.commit()
    finally:
        conn.close()
    account = identity.get_account(account.id)

    stale = open_session(DeviceStorage("d1"), account=account, signed_in_at=clock() - timedelta(hours=2))
    result = FlowController(stale, clock=clock).delete_account()
    assert result.failure.kind == FailureKind.REQUIRES_FRESH_AUTH

    fresh = open_session(DeviceStorage("d2"), account=account, signed_in_at=clock())
    flow = FlowController(fresh, clock=clock)
    assert flow.delete_account().ok
    assert identity.get_account(account.id) is None
    assert flow.state.step == WELCOME


def test_invalid_profile_is_not_saved(guest_flow):
    result = guest_flow.save_settings(Profile(hourly_wage=0))
    assert not result.ok
    assert "hourly wage must be positive" in result.failure.message
    assert guest_flow.session.profile.hourly_wage == 20.0


def test_logo_reset_sends_guest_without_profile_to_setup(db, clock):
    flow = FlowController(continue_as_guest(DeviceStorage("logo-guest")), clock=clock)
    flow.logo_reset()
    assert flow.state == FlowState(step=SETUP)


def test_logo_reset_without_session_goes_to_welcome(db, clock):
    flow = FlowController(open_session(DeviceStorage("logo-anon")), clock=clock)
    flow.logo_reset()
    assert flow.state.step == WELCOME


def test_overlapping_results_requests_save_once(guest_flow, clock):
    guest_flow.submit_price(30, "book", "fun")
    guest_flow.complete_cool_off()
    # Two requests carrying the same pre-save flow cookie
    first = FlowController(guest_flow.session, FlowState.from_dict(guest_flow.state.to_dict()), clock=clock)
    second = FlowController(guest_flow.session, FlowState.from_dict(guest_flow.state.to_dict()), clock=clock)
    _, saved = first.show_results()
    _, again = second.show_results()
    assert saved.ok
    assert again is None
    assert len(list(guest_flow.session.history.list())) == 1


def test_failed_results_save_can_be_retried(guest_flow):
    class Broken:
        def create(self, record, now=None):
            raise RuntimeError("disk full")

    history = guest_flow.session.history
    guest_flow.session.history = Broken()
    guest_flow.submit_price(30, "book")
    guest_flow.complete_cool_off()
    _, saved = guest_flow.show_results()
    assert not saved.ok

    guest_flow.session.history = history
    _, saved = guest_flow.show_results()
    assert saved.ok
    assert len(list(history.list())) == 1


def test_device_claim_is_single_winner(db):
    device = DeviceStorage("claims")
    assert device.claim("k", "a")
    assert not device.claim("k", "a")
    assert device.claim("k", "b")
    assert device.get_item("k") == "b"
