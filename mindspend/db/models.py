"""Dataclass models for the persisted entities.

Account maps to the accounts table. Profile and PurchaseRecord are stored in
two shapes: columns/JSON in the account-keyed tables, and camelCase JSON
documents in device storage for guest sessions. to_dict()/from_dict() produce
and read the JSON shape used by both.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Optional

DEFAULT_WORKING_DAYS = 220

CATEGORIES = ["food", "tech", "clothes", "fun", "transport", "subscription", "other"]
DECISIONS = ["undecided", "bought", "skipped"]
DEFAULT_LABEL = "this purchase"

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def parse_instant(raw) -> datetime:
    """Convert a stored timestamp to an aware datetime.

    Accepts datetimes, ISO strings and epoch milliseconds. Anything else
    (missing, unparseable) maps to the Unix epoch.
    """
    if isinstance(raw, datetime):
        return raw if raw.tzinfo else raw.replace(tzinfo=timezone.utc)
    if isinstance(raw, bool):
        return EPOCH
    if isinstance(raw, (int, float)):
        return datetime.fromtimestamp(raw / 1000, tz=timezone.utc)
    if isinstance(raw, str) and raw:
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError:
            return EPOCH
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return EPOCH


@dataclass
class Account:
    """An authenticated identity. Guests never have one."""
    id: Optional[int]
    email: str
    display_name: Optional[str] = None
    photo_url: Optional[str] = None
    email_verified: bool = False
    provider: str = "password"
    created_at: Optional[str] = None


@dataclass
class Profile:
    """A user's economic baseline.

    hourly_wage is net pay per hour and is always derived at setup, either
    from a direct hourly entry or from monthly income (see core/profiles.py).
    Goals are optional savings targets; None means "not set".
    """

    hourly_wage: float
    working_days_per_year: int = DEFAULT_WORKING_DAYS
    monthly_expenses: float = 0.0
    emergency_fund_goal: Optional[float] = None
    freedom_goal: Optional[float] = None

    def validate(self) -> list[str]:
        problems = []
        if not self.hourly_wage or self.hourly_wage <= 0:
            problems.append("hourly wage must be positive")
        if self.working_days_per_year <= 0:
            problems.append("working days per year must be positive")
        if self.monthly_expenses < 0:
            problems.append("monthly expenses cannot be negative")
        return problems

    def to_dict(self) -> dict:
        data = {
            "hourlyWage": self.hourly_wage,
            "workingDaysPerYear": self.working_days_per_year,
            "monthlyExpenses": self.monthly_expenses,
        }
        if self.emergency_fund_goal is not None:
            data["emergencyFundGoal"] = self.emergency_fund_goal
        if self.freedom_goal is not None:
            data["freedomGoal"] = self.freedom_goal
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Profile":
        return cls(
            hourly_wage=float(data["hourlyWage"]),
            working_days_per_year=int(data.get("workingDaysPerYear") or DEFAULT_WORKING_DAYS),
            monthly_expenses=float(data.get("monthlyExpenses") or 0),
            emergency_fund_goal=data.get("emergencyFundGoal"),
            freedom_goal=data.get("freedomGoal"),
        )

    def copy(self) -> "Profile":
        return replace(self)


@dataclass
class NewPurchaseRecord:
    """A price check ready to be stored; the store assigns id, timestamp and hour."""

    price: float
    label: str
    category: str
    profile: Profile
    calculations: dict
    decision: str = "undecided"

    @classmethod
    def build(cls, price: float, label: str, category: str, profile: Profile,
              calculations: dict) -> "NewPurchaseRecord":
        """Normalise label/category and snapshot the profile."""
        label = (label or "").strip() or DEFAULT_LABEL
        category = category if category in CATEGORIES else "other"
        return cls(
            price=price,
            label=label,
            category=category,
            profile=profile.copy(),
            calculations=dict(calculations),
        )


@dataclass
class PurchaseRecord:
    """A stored price check.

    price, label, category, profile and calculations are write-once. Only
    decision, regret and regret_checked_at change after creation.
    """

    id: str
    price: float
    label: str
    timestamp: datetime
    profile: Profile
    calculations: dict = field(default_factory=dict)
    category: str = "other"
    decision: str = "undecided"
    time_of_day: Optional[int] = None
    regret: Optional[bool] = None
    regret_checked_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "price": self.price,
            "label": self.label,
            "category": self.category,
            "timestamp": self.timestamp.isoformat(),
            "profile": self.profile.to_dict(),
            "calculations": dict(self.calculations),
            "decision": self.decision,
            "timeOfDay": self.time_of_day,
        }
        if self.regret is not None:
            data["regret"] = self.regret
        if self.regret_checked_at is not None:
            data["regretCheckedAt"] = self.regret_checked_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "PurchaseRecord":
        checked = data.get("regretCheckedAt")
        return cls(
            id=str(data["id"]),
            price=float(data["price"]),
            label=data.get("label") or DEFAULT_LABEL,
            timestamp=parse_instant(data.get("timestamp")),
            profile=Profile.from_dict(data["profile"]),
            calculations=dict(data.get("calculations") or {}),
            category=data.get("category") or "other",
            decision=data.get("decision") or "undecided",
            time_of_day=data.get("timeOfDay"),
            regret=data.get("regret"),
            regret_checked_at=parse_instant(checked) if checked is not None else None,
        )
