"""Summary statistics and pattern flags over a purchase history.

summarize() is pure and read-only; refreshing the insights page is just
calling it again with a fresh list of records. The pattern thresholds are
exact cutoffs:
    great self-control   skipped_count > 2
    late-night pattern   late_night_percentage > 30 and total_checks >= 5
    busy week            recent_checks > 5
"""

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable

from mindspend.core.calculator import WORKDAY_HOURS, round_half_up
from mindspend.db.models import PurchaseRecord

LATE_NIGHT_HOUR = 22
RECENT_WINDOW = timedelta(days=7)
WORK_DAYS_IN_YEAR = 220

GREAT_SELF_CONTROL = "great-self-control"
LATE_NIGHT_PATTERN = "late-night-pattern"
BUSY_WEEK = "busy-week"


@dataclass
class Insight:
    kind: str
    title: str
    description: str
    positive: bool = False


@dataclass
class Summary:
    total_checks: int = 0
    skipped_count: int = 0
    bought_count: int = 0
    undecided_count: int = 0
    total_skipped_value: float = 0.0
    total_skipped_time: int = 0
    late_night_checks: int = 0
    late_night_percentage: int = 0
    recent_checks: int = 0
    category_counts: dict = field(default_factory=dict)
    insights: list = field(default_factory=list)  # list[Insight]

    def has(self, kind: str) -> bool:
        return any(insight.kind == kind for insight in self.insights)


def summarize(records: Iterable[PurchaseRecord], now: datetime) -> Summary:
    records = list(records)
    skipped = [r for r in records if r.decision == "skipped"]
    bought = [r for r in records if r.decision == "bought"]

    total = len(records)
    late = sum(1 for r in records if r.time_of_day is not None and r.time_of_day >= LATE_NIGHT_HOUR)
    cutoff = now - RECENT_WINDOW

    summary = Summary(
        total_checks=total,
        skipped_count=len(skipped),
        bought_count=len(bought),
        undecided_count=total - len(skipped) - len(bought),
        total_skipped_value=sum(r.price for r in skipped),
        total_skipped_time=sum(r.calculations.get("timeInMinutes") or 0 for r in skipped),
        late_night_checks=late,
        late_night_percentage=int(round_half_up(late / total * 100)) if total else 0,
        recent_checks=sum(1 for r in records if r.timestamp > cutoff),
        category_counts=dict(Counter(r.category or "other" for r in records)),
    )
    summary.insights = _insights(summary)
    return summary


def _insights(summary: Summary) -> list[Insight]:
    found = []
    saved = int(round_half_up(summary.total_skipped_value))
    if summary.skipped_count > 2:
        found.append(Insight(
            kind=GREAT_SELF_CONTROL,
            title="Great self-control!",
            description=(
                f"You've resisted {summary.skipped_count} impulse purchases, saving ${saved}."
            ),
            positive=True,
        ))
    if summary.late_night_percentage > 30 and summary.total_checks >= 5:
        found.append(Insight(
            kind=LATE_NIGHT_PATTERN,
            title="Late-night spending pattern",
            description=(
                f"{summary.late_night_percentage}% of your checks happen after 10 PM. "
                "Consider waiting until morning before making decisions."
            ),
        ))
    if summary.recent_checks > 5:
        found.append(Insight(
            kind=BUSY_WEEK,
            title="Busy spending week",
            description=(
                f"You've checked {summary.recent_checks} purchases in the last 7 days. Stay mindful!"
            ),
        ))
    return found


def format_duration(minutes: float) -> str:
    """Render a total of minutes in the largest sensible unit.

    Under 24 hours: '1h 30m', '2h', '45m'. From 24 hours on, 8-hour workdays
    ('3d 2h'), and once that reaches a 220-workday year, years ('1y 5d').
    """
    hours = int(minutes // 60)
    mins = int(round_half_up(minutes % 60))

    if hours < 24:
        if hours == 0:
            return f"{mins}m"
        if mins == 0:
            return f"{hours}h"
        return f"{hours}h {mins}m"

    work_days = hours // WORKDAY_HOURS
    remaining_hours = hours % WORKDAY_HOURS
    if work_days >= WORK_DAYS_IN_YEAR:
        years = work_days // WORK_DAYS_IN_YEAR
        return f"{years}y {work_days % WORK_DAYS_IN_YEAR}d"
    return f"{work_days}d {remaining_hours}h"


def time_ago(when: datetime, now: datetime) -> str:
    diff = now - when
    mins = int(diff.total_seconds() // 60)
    hours = mins // 60
    days = hours // 24
    if mins < 1:
        return "Just now"
    if mins < 60:
        return f"{mins} min ago"
    if hours < 24:
        return f"{hours}h ago"
    if days < 7:
        return f"{days}d ago"
    return when.strftime("%Y-%m-%d")
