"""Profile setup and the two profile backends.

build_profile() turns the setup/settings form into a Profile. Every save
replaces the profile wholesale; the account-backed store merges only at the
document level (email, display name and photo are refreshed alongside).
"""

import json
import math
from datetime import datetime, timezone
from typing import Optional

from mindspend.core.calculator import WORKDAY_HOURS, round_half_up
from mindspend.core.device_storage import PROFILE, DeviceStorage
from mindspend.db.database import get_connection
from mindspend.db.models import DEFAULT_WORKING_DAYS, Account, Profile
from mindspend.logging_setup import get_logger

logger = get_logger("mindspend.profiles")

# Product heuristics. Tunable, not load-bearing.
EXPENSE_ESTIMATE_RATIO = 0.8
AVG_WORKING_DAYS_PER_MONTH = 21.6

INCOME_TYPES = ("monthly", "hourly")


def parse_amount(raw) -> Optional[float]:
    """A non-negative number from a form field, or None for blank/invalid input."""
    try:
        value = float(str(raw).strip())
    except (TypeError, ValueError):
        return None
    if not math.isfinite(value) or value < 0:
        return None
    return value


def _working_days(raw) -> int:
    try:
        days = int(raw)
    except (TypeError, ValueError):
        return DEFAULT_WORKING_DAYS
    return days if days > 0 else DEFAULT_WORKING_DAYS


def build_profile(
    income_type: str,
    amount: float,
    working_days=None,
    monthly_expenses: Optional[float] = None,
    emergency_fund_goal: Optional[float] = None,
    freedom_goal: Optional[float] = None,
) -> Profile:
    """Derive a Profile from a monthly income or an hourly wage.

    Monthly income converts as (income * 12) / (working_days * 8). When
    monthly_expenses is not given it is estimated as 80% of monthly income
    (for hourly entries, of hourly * 8 * 21.6).
    """
    days = _working_days(working_days)
    if income_type == "hourly":
        hourly = amount
        estimated_income = amount * WORKDAY_HOURS * AVG_WORKING_DAYS_PER_MONTH
    else:
        hourly = (amount * 12) / (days * WORKDAY_HOURS)
        estimated_income = amount

    if monthly_expenses is None:
        monthly_expenses = estimated_income * EXPENSE_ESTIMATE_RATIO

    return Profile(
        hourly_wage=round_half_up(hourly, 2),
        working_days_per_year=days,
        monthly_expenses=round_half_up(monthly_expenses),
        emergency_fund_goal=emergency_fund_goal or None,
        freedom_goal=freedom_goal or None,
    )


def monthly_income(profile: Profile) -> int:
    """Monthly income implied by a profile, used to pre-fill the settings form."""
    return int(round_half_up(profile.hourly_wage * profile.working_days_per_year * WORKDAY_HOURS / 12))


class CloudProfileStore:
    """The per-account profile document in user_profiles."""

    def __init__(self, account: Account):
        self.account = account

    def load(self) -> Optional[Profile]:
        conn = get_connection()
        try:
            row = conn.execute(
                "SELECT profile FROM user_profiles WHERE account_id = ?", (self.account.id,)
            ).fetchone()
        finally:
            conn.close()
        if not row or not row["profile"]:
            logger.debug("No profile document for account %s", self.account.id)
            return None
        return Profile.from_dict(json.loads(row["profile"]))

    def save(self, profile: Profile) -> None:
        conn = get_connection()
        try:
            conn.execute(
                """INSERT INTO user_profiles (account_id, email, display_name, photo_url, profile, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?)
                   ON CONFLICT(account_id) DO UPDATE SET
                       email=excluded.email,
                       display_name=excluded.display_name,
                       photo_url=excluded.photo_url,
                       profile=excluded.profile,
                       updated_at=excluded.updated_at""",
                (
                    self.account.id,
                    self.account.email,
                    self.account.display_name,
                    self.account.photo_url,
                    json.dumps(profile.to_dict()),
                    datetime.now(timezone.utc).isoformat(),
                ),
            )
            conn.commit()
        finally:
            conn.close()
        logger.info("Profile saved for account %s", self.account.id)

    def document(self) -> Optional[dict]:
        """The whole profile document, or None."""
        conn = get_connection()
        try:
            row = conn.execute(
                "SELECT * FROM user_profiles WHERE account_id = ?", (self.account.id,)
            ).fetchone()
        finally:
            conn.close()
        if not row:
            return None
        return {
            "email": row["email"],
            "displayName": row["display_name"],
            "photoURL": row["photo_url"],
            "profile": json.loads(row["profile"]) if row["profile"] else None,
            "updatedAt": row["updated_at"],
        }

    def clear(self) -> None:
        conn = get_connection()
        try:
            conn.execute("DELETE FROM user_profiles WHERE account_id = ?", (self.account.id,))
            conn.commit()
        finally:
            conn.close()


class DeviceProfileStore:
    """Guest profile under the device's 'profile' key."""

    def __init__(self, storage: DeviceStorage):
        self.storage = storage

    def load(self) -> Optional[Profile]:
        data = self.storage.get_json(PROFILE)
        if not isinstance(data, dict):
            return None
        try:
            return Profile.from_dict(data)
        except (KeyError, TypeError, ValueError):
            logger.warning("Unreadable guest profile on device %s", self.storage.device_id)
            return None

    def save(self, profile: Profile) -> None:
        self.storage.set_json(PROFILE, profile.to_dict())
        logger.info("Guest profile saved on device %s", self.storage.device_id)

    def clear(self) -> None:
        self.storage.remove_item(PROFILE)
