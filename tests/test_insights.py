from datetime import timedelta

from mindspend.core.insights import (
    BUSY_WEEK, GREAT_SELF_CONTROL, LATE_NIGHT_PATTERN, format_duration, summarize, time_ago,
)
from mindspend.db.models import PurchaseRecord


def _record(profile, now, n, decision="undecided", hour=12, days_ago=30, price=10.0, minutes=30,
            category="other"):
    return PurchaseRecord(
        id=f"r{n}",
        price=price,
        label=f"item {n}",
        timestamp=now - timedelta(days=days_ago, minutes=n),
        profile=profile,
        calculations={"timeInMinutes": minutes},
        category=category,
        decision=decision,
        time_of_day=hour,
    )


def test_empty_history(now):
    summary = summarize([], now)
    assert summary.total_checks == 0
    assert summary.late_night_percentage == 0
    assert summary.insights == []


def test_counts_and_skipped_totals(profile, now):
    records = [
        _record(profile, now, 1, "skipped", price=25.0, minutes=75),
        _record(profile, now, 2, "skipped", price=10.5, minutes=30),
        _record(profile, now, 3, "bought"),
        _record(profile, now, 4, category="tech"),
    ]
    summary = summarize(records, now)
    assert summary.total_checks == 4
    assert summary.skipped_count == 2
    assert summary.bought_count == 1
    assert summary.undecided_count == 1
    assert summary.total_skipped_value == 35.5
    assert summary.total_skipped_time == 105
    assert summary.category_counts == {"other": 3, "tech": 1}


def test_self_control_needs_more_than_two_skips(profile, now):
    two = [_record(profile, now, i, "skipped") for i in range(2)]
    assert not summarize(two, now).has(GREAT_SELF_CONTROL)
    three = [_record(profile, now, i, "skipped") for i in range(3)]
    assert summarize(three, now).has(GREAT_SELF_CONTROL)


def test_late_night_pattern_needs_five_checks(profile, now):
    four = [_record(profile, now, i, hour=23) for i in range(4)]
    summary = summarize(four, now)
    assert summary.late_night_percentage == 100
    assert not summary.has(LATE_NIGHT_PATTERN)

    five = four + [_record(profile, now, 5, hour=9)]
    assert summarize(five, now).has(LATE_NIGHT_PATTERN)


def test_late_night_threshold_is_strict(profile, now):
    # 3 of 10 late is exactly 30%: no flag
    records = [_record(profile, now, i, hour=22 if i < 3 else 10) for i in range(10)]
    summary = summarize(records, now)
    assert summary.late_night_percentage == 30
    assert not summary.has(LATE_NIGHT_PATTERN)


def test_busy_week_counts_last_seven_days(profile, now):
    recent = [_record(profile, now, i, days_ago=1) for i in range(5)]
    old = [_record(profile, now, 10 + i, days_ago=8) for i in range(3)]
    assert not summarize(recent + old, now).has(BUSY_WEEK)
    six = recent + [_record(profile, now, 6, days_ago=2)]
    summary = summarize(six, now)
    assert summary.recent_checks == 6
    assert summary.has(BUSY_WEEK)


def test_format_duration_under_a_day():
    assert format_duration(90) == "1h 30m"
    assert format_duration(120) == "2h"
    assert format_duration(45) == "45m"


def test_format_duration_in_workdays_and_years():
    assert format_duration(26 * 60) == "3d 2h"
    assert format_duration(220 * 8 * 60) == "1y 0d"
    assert format_duration((225 * 8 + 3) * 60) == "1y 5d"


def test_time_ago(now):
    assert time_ago(now, now) == "Just now"
    assert time_ago(now - timedelta(minutes=5), now) == "5 min ago"
    assert time_ago(now - timedelta(hours=3), now) == "3h ago"
    assert time_ago(now - timedelta(days=2), now) == "2d ago"
    assert time_ago(now - timedelta(days=30), now) == "2024-02-14"


def test_skipped_total_ignores_bought(profile, now):
    records = [_record(profile, now, i, "skipped", price=p) for i, p in enumerate([10, 20, 30])]
    records += [_record(profile, now, 10 + i, "bought", price=100) for i in range(2)]
    summary = summarize(records, now)
    assert summary.total_skipped_value == 60
    assert summary.bought_count == 2


def test_late_night_forty_percent_of_five_is_flagged(profile, now):
    records = [_record(profile, now, i, hour=23 if i < 2 else 10) for i in range(5)]
    summary = summarize(records, now)
    assert summary.late_night_percentage == 40
    assert summary.has(LATE_NIGHT_PATTERN)


def test_late_night_with_only_four_checks_is_not_flagged(profile, now):
    records = [_record(profile, now, i, hour=23 if i < 2 else 10) for i in range(4)]
    summary = summarize(records, now)
    assert summary.late_night_percentage == 50
    assert not summary.has(LATE_NIGHT_PATTERN)
