"""Price -> "real cost" conversions against a user's Profile.

compute_derived_cost() is pure: no I/O, and the same inputs always give the
same outputs. It does not validate the price; callers reject non-positive
input first (see core/session.py parse_price).

Rounding is half-up everywhere, because these numbers are shown to users
and must match what they would compute by hand:
    whole minutes for time cost, 2 decimals for percentages and month
    fractions, 1 decimal for day/week equivalents.

Any value whose denominator is zero or missing is left as None and omitted
from to_dict().
"""

import math
from dataclasses import dataclass, field
from typing import Optional

from mindspend.db.models import Profile

# Product heuristics. Tunable, not load-bearing.
WORKDAY_HOURS = 8
WEEKS_PER_MONTH = 4
DAYS_PER_MONTH = 30
GROCERY_SHARE = 0.15
UTILITIES_PER_DAY = 7

QUICK = "quick"
SOLID_CHUNK = "solid-chunk"
PART_OF_WORKDAY = "part-of-workday"
MULTIPLE_WORKDAYS = "multiple-workdays"


def round_half_up(value: float, digits: int = 0) -> float:
    """Round like a person would: 0.5 always goes up."""
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


@dataclass
class GoalShare:
    """How much of a savings goal one price represents."""
    name: str
    title: str
    goal: float
    percentage: float  # raw, unclamped
    description: str = ""

    @property
    def display(self) -> str:
        if self.percentage < 0.01:
            return "< 0.01%"
        return f"{self.percentage:.2f}%"

    @property
    def bar_width(self) -> float:
        return min(self.percentage, 100.0)


@dataclass
class DerivedCost:
    time_in_minutes: int
    grocery_weeks: Optional[int] = None
    emergency_days: Optional[int] = None
    emergency_buffer_days: Optional[float] = None
    months_of_expenses: Optional[float] = None
    weeks_of_groceries: Optional[float] = None
    days_of_utilities: Optional[float] = None
    goals: list = field(default_factory=list)  # list[GoalShare]

    @property
    def workday_fraction(self) -> float:
        return self.time_in_minutes / (WORKDAY_HOURS * 60)

    def to_dict(self) -> dict:
        """camelCase snapshot stored on a PurchaseRecord."""
        data = {"timeInMinutes": self.time_in_minutes}
        for key, value in (
            ("groceryWeeks", self.grocery_weeks),
            ("emergencyDays", self.emergency_days),
            ("emergencyBufferDays", self.emergency_buffer_days),
            ("monthsOfExpenses", self.months_of_expenses),
            ("weeksOfGroceries", self.weeks_of_groceries),
            ("daysOfUtilities", self.days_of_utilities),
        ):
            if value is not None:
                data[key] = value
        if self.goals:
            data["goalPercentages"] = {g.name: round_half_up(g.percentage, 2) for g in self.goals}
        return data


def _goal_shares(price: float, profile: Profile) -> list[GoalShare]:
    shares = []
    for name, title, goal, description in (
        ("emergencyFund", "Emergency Fund", profile.emergency_fund_goal, "of your safety net target"),
        ("freedom", "Future Freedom", profile.freedom_goal, "of your freedom fund"),
    ):
        if goal:
            shares.append(GoalShare(
                name=name, title=title, goal=goal,
                percentage=price / goal * 100, description=description,
            ))
    return shares


def compute_derived_cost(price: float, profile: Profile) -> DerivedCost:
    """Convert a price into time, expense and goal equivalents for a profile."""
    cost = DerivedCost(
        time_in_minutes=int(round_half_up(price / profile.hourly_wage * 60)),
        days_of_utilities=round_half_up(price / UTILITIES_PER_DAY, 1),
        goals=_goal_shares(price, profile),
    )
    expenses = profile.monthly_expenses
    if expenses:
        daily = expenses / DAYS_PER_MONTH
        weekly_groceries = expenses * GROCERY_SHARE / WEEKS_PER_MONTH
        cost.grocery_weeks = int(round_half_up(price / expenses * WEEKS_PER_MONTH))
        cost.emergency_days = int(round_half_up(price / daily))
        cost.emergency_buffer_days = round_half_up(price / daily, 1)
        cost.months_of_expenses = round_half_up(price / expenses, 2)
        cost.weeks_of_groceries = round_half_up(price / weekly_groceries, 1)
    return cost


def time_context(workday_fraction: float) -> str:
    """Bucket a workday fraction; each threshold is exclusive for the lower tier."""
    if workday_fraction < 0.25:
        return QUICK
    if workday_fraction < 0.5:
        return SOLID_CHUNK
    if workday_fraction < 1:
        return PART_OF_WORKDAY
    return MULTIPLE_WORKDAYS


def describe_time_context(workday_fraction: float) -> str:
    tier = time_context(workday_fraction)
    if tier == QUICK:
        return "A quick coffee break of your life"
    if tier == SOLID_CHUNK:
        return "A solid chunk of your morning"
    if tier == PART_OF_WORKDAY:
        return f"That's {int(round_half_up(workday_fraction * 100))}% of a full workday"
    return f"That's {workday_fraction:.1f} full workdays of your life"


def format_time_cost(total_minutes: float) -> str:
    """90 -> '1h 30min', 45 -> '45min', 120 -> '2h'."""
    hours = int(total_minutes // 60)
    mins = int(round_half_up(total_minutes % 60))
    if hours == 0:
        return f"{mins}min"
    if mins == 0:
        return f"{hours}h"
    return f"{hours}h {mins}min"


def months_of_expenses_display(months: float) -> str:
    """0.5 -> '50%' (share of one month); 1.5 -> '1.5 months'."""
    if months >= 1:
        return f"{months:.1f} months"
    return f"{int(round_half_up(months * 100))}%"


def format_price(price: float) -> str:
    return f"{price:,.2f}"
