"""Session context and the price-check flow.

A SessionContext is built once per request from the identity state (signed
in account, guest device, or neither). The history and profile backends are
chosen right there and nowhere else, so no call site needs to know whether
the user is a guest.

FlowController sequences the steps of a price check:

    welcome -> auth -> (verify_email) -> setup -> price -> cooloff -> results
                                                  ^                    |
                                                  +---- new_price -----+

plus the side steps insights and profile. Every persistence or identity call
is wrapped into a Result; a failed action leaves the flow state untouched.
FlowState is plain data so the web layer can keep it in a signed cookie.
"""

import math
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from mindspend import config
from mindspend.core import identity
from mindspend.core.calculator import DerivedCost, compute_derived_cost
from mindspend.core import device_storage
from mindspend.core.device_storage import GUEST_MODE, LAST_ETHICAL_CHECK, SAVED_CHECK, DeviceStorage
from mindspend.core.errors import BackendError, FailureKind, Result
from mindspend.core.history import CloudHistoryStore, DeviceHistoryStore, HistoryStore
from mindspend.core.insights import Summary, summarize
from mindspend.core.profiles import CloudProfileStore, DeviceProfileStore
from mindspend.db.models import CATEGORIES, DEFAULT_LABEL, Account, NewPurchaseRecord, Profile
from mindspend.logging_setup import get_logger

logger = get_logger("mindspend.session")

WELCOME = "welcome"
AUTH = "auth"
VERIFY_EMAIL = "verify_email"
SETUP = "setup"
PRICE = "price"
COOLOFF = "cooloff"
RESULTS = "results"
PROFILE = "profile"
INSIGHTS = "insights"
STEPS = (WELCOME, AUTH, VERIFY_EMAIL, SETUP, PRICE, COOLOFF, RESULTS, PROFILE, INSIGHTS)

ETHICAL_CHECK_INTERVAL = timedelta(days=7)


def parse_price(raw) -> Optional[float]:
    """Return a positive finite price, or None when the input can't be used."""
    try:
        value = float(str(raw).strip())
    except (TypeError, ValueError):
        return None
    if not math.isfinite(value) or value <= 0:
        return None
    return value


@dataclass
class SessionContext:
    """Who is using the app on this device and where their data lives."""

    device: DeviceStorage
    account: Optional[Account] = None
    is_guest: bool = False
    signed_in_at: Optional[datetime] = None
    profile: Optional[Profile] = None
    history: Optional[HistoryStore] = None
    profiles: object = None  # CloudProfileStore | DeviceProfileStore

    @property
    def authenticated(self) -> bool:
        return self.account is not None

    @property
    def active(self) -> bool:
        return self.authenticated or self.is_guest

    @property
    def needs_verification(self) -> bool:
        return self.authenticated and identity.needs_verification(self.account)

    def close(self) -> None:
        """Tear the session down (sign-out / reset). Guest keys are removed."""
        self.device.remove_item(GUEST_MODE)
        self.device.remove_item(device_storage.PROFILE)
        self.account = None
        self.signed_in_at = None
        self.is_guest = False
        self.profile = None
        self.history = None
        self.profiles = None


def open_session(device: DeviceStorage, account: Account = None,
                 signed_in_at: datetime = None) -> SessionContext:
    """Build the session and pick its backends once."""
    session = SessionContext(device=device, account=account, signed_in_at=signed_in_at)
    if account is not None:
        session.history = CloudHistoryStore(account.id)
        session.profiles = CloudProfileStore(account)
        if not identity.needs_verification(account):
            session.profile = session.profiles.load()
    elif device.get_item(GUEST_MODE) == "true":
        session.is_guest = True
        session.history = DeviceHistoryStore(device)
        session.profiles = DeviceProfileStore(device)
        session.profile = session.profiles.load()
    return session


def continue_as_guest(device: DeviceStorage) -> SessionContext:
    device.set_item(GUEST_MODE, "true")
    return open_session(device)


def ethical_check_due(device: DeviceStorage, now: datetime) -> bool:
    """True when the weekly prompt has never been answered or is a week old."""
    raw = device.get_item(LAST_ETHICAL_CHECK)
    try:
        last = int(raw)
    except (TypeError, ValueError):
        return True
    return now.timestamp() * 1000 - last > ETHICAL_CHECK_INTERVAL.total_seconds() * 1000


def record_ethical_check(device: DeviceStorage, now: datetime) -> None:
    device.set_item(LAST_ETHICAL_CHECK, str(int(now.timestamp() * 1000)))


@dataclass
class FlowState:
    step: str = WELCOME
    viewing_history: bool = False
    price: Optional[float] = None
    label: str = ""
    category: str = "other"
    cooloff_started_at: Optional[float] = None
    saved_key: Optional[str] = None
    record_id: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data) -> "FlowState":
        if not isinstance(data, dict):
            return cls()
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        state = cls(**known)
        if state.step not in STEPS:
            state.step = WELCOME
        return state


def _local_now() -> datetime:
    return datetime.now().astimezone()


class FlowController:
    def __init__(self, session: SessionContext, state: FlowState = None,
                 clock: Callable[[], datetime] = None):
        self.session = session
        self.state = state or FlowState()
        self.clock = clock or _local_now

    # ── Step bookkeeping ────────────────────────────────────────────────────

    def sync(self) -> str:
        """Bring the step in line with the identity and profile state."""
        session, state = self.session, self.state
        if session.needs_verification:
            state.step = VERIFY_EMAIL
        elif not session.active:
            if state.step != AUTH:
                state.step = WELCOME
        elif session.profile is None:
            if state.step != PROFILE:
                state.step = SETUP
        elif state.step in (WELCOME, AUTH, SETUP, VERIFY_EMAIL):
            state.step = PRICE
        return state.step

    def get_started(self) -> None:
        self.state.step = AUTH

    def auth_succeeded(self) -> None:
        self.state.step = PRICE if self.session.profile else SETUP

    def open_insights(self) -> None:
        self.state.step = INSIGHTS

    def open_profile(self) -> None:
        if self.session.authenticated:
            self.state.step = PROFILE

    def logo_reset(self) -> None:
        if self.session.profile:
            step = PRICE
        elif self.session.active:
            step = SETUP
        else:
            step = WELCOME
        self.state = FlowState(step=step)

    # ── Profile ─────────────────────────────────────────────────────────────

    def complete_setup(self, profile: Profile) -> Result:
        result = self.save_settings(profile)
        if result.ok:
            self.state.step = PRICE
        return result

    def save_settings(self, profile: Profile) -> Result:
        """Replace the profile wholesale in the session's backend."""
        problems = profile.validate()
        if problems:
            return Result.fail(BackendError(FailureKind.UNKNOWN, f"Invalid profile: {', '.join(problems)}."))
        try:
            self.session.profiles.save(profile)
        except Exception as e:
            logger.error("Failed to save profile", exc_info=True)
            return Result.fail(e)
        self.session.profile = profile
        return Result.success(profile)

    # ── Price check ─────────────────────────────────────────────────────────

    def submit_price(self, price: float, label: str = "", category: str = "other") -> None:
        """Start the cool-off for a price that already passed parse_price()."""
        self.state = FlowState(
            step=COOLOFF,
            price=price,
            label=(label or "").strip(),
            category=category if category in CATEGORIES else "other",
            cooloff_started_at=self.clock().timestamp(),
        )

    def cool_off_remaining(self) -> int:
        """Whole seconds left in the cool-off; 0 once it has run out."""
        if self.state.cooloff_started_at is None:
            return 0
        elapsed = self.clock().timestamp() - self.state.cooloff_started_at
        return max(0, math.ceil(config.cool_off_seconds() - elapsed))

    def complete_cool_off(self) -> bool:
        if self.state.step == COOLOFF and self.cool_off_remaining() == 0:
            self.state.step = RESULTS
            return True
        return False

    def show_results(self) -> tuple[DerivedCost, Optional[Result]]:
        """Compute the cost and save the check once per (price, label).

        Returns the DerivedCost and the save outcome, which is None when no
        save was attempted (already saved, or re-opened from history).

        The flow cookie's saved_key skips repeat saves cheaply; the device's
        saved_check claim makes overlapping requests carrying the same
        pre-save cookie save only once.
        """
        state = self.state
        profile = self.session.profile
        cost = compute_derived_cost(state.price, profile)

        if state.viewing_history:
            return cost, None
        key = f"{state.price}-{state.label}"
        if state.saved_key == key:
            logger.debug("Skipping save because purchase already persisted")
            return cost, None
        state.saved_key = key
        device = self.session.device
        claim = f"{state.cooloff_started_at}|{key}"
        if not device.claim(SAVED_CHECK, claim):
            logger.debug("Skipping save because another request already saved this check")
            return cost, None

        record = NewPurchaseRecord.build(
            price=state.price,
            label=state.label,
            category=state.category,
            profile=profile,
            calculations=cost.to_dict(),
        )
        logger.debug("Saving purchase (guest=%s, account=%s)", self.session.is_guest,
                     self.session.account.id if self.session.account else None)
        try:
            state.record_id = self.session.history.create(record, now=self.clock())
        except Exception as e:
            logger.error("Failed to save purchase history", exc_info=True)
            device.remove_item(SAVED_CHECK)
            state.saved_key = None
            return cost, Result.fail(e)
        logger.info("Purchase saved")
        return cost, Result.success(state.record_id)

    def new_price(self) -> None:
        self.state = FlowState(step=PRICE)

    @property
    def display_label(self) -> str:
        return self.state.label or DEFAULT_LABEL

    # ── History ─────────────────────────────────────────────────────────────

    def load_insights(self, limit: int = None) -> Result:
        """Read the history and summarize it. Value: (Summary, records)."""
        try:
            records = list(self.session.history.list(limit or config.history_limit()))
        except Exception as e:
            logger.error("Failed to load history", exc_info=True)
            return Result.fail(e)
        summary: Summary = summarize(records, self.clock())
        return Result.success((summary, records))

    def view_history(self, record_id: str) -> Result:
        """Re-open a stored check on the results step without saving it again."""
        try:
            record = self.session.history.get(record_id)
        except Exception as e:
            return Result.fail(e)
        if record is None:
            return Result.fail(BackendError(FailureKind.UNKNOWN, "That check no longer exists."))
        self.state = FlowState(
            step=RESULTS,
            viewing_history=True,
            price=record.price,
            label=record.label,
            category=record.category,
            record_id=record.id,
        )
        return Result.success(record)

    def decide(self, record_id: str, decision: str, regret: Optional[bool] = None) -> Result:
        try:
            self.session.history.update_decision(record_id, decision, regret, now=self.clock())
        except Exception as e:
            logger.error("Failed to save decision", exc_info=True)
            return Result.fail(e)
        return Result.success(decision)

    def delete_record(self, record_id: str) -> Result:
        try:
            self.session.history.delete(record_id)
        except Exception as e:
            logger.error("Failed to delete purchase", exc_info=True)
            return Result.fail(e)
        return Result.success()

    # ── Identity ────────────────────────────────────────────────────────────

    def reset(self) -> None:
        """Clear local data and sign out; back to the welcome step."""
        self.session.close()
        self.state = FlowState(step=WELCOME)

    def delete_account(self) -> Result:
        session = self.session
        try:
            if session.signed_in_at is None:
                raise BackendError(FailureKind.REQUIRES_FRESH_AUTH)
            identity.delete_account(session.account, session.signed_in_at, now=self.clock())
        except Exception as e:
            return Result.fail(e)
        self.reset()
        return Result.success()
