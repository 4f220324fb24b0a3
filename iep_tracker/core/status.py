"""
Assessment status derivation: due/overdue/current state per goal and per-date pass rates.
Pure functions over a Goal's assessment results; nothing here holds state.
"""
from collections import namedtuple
from datetime import date
from typing import Dict, Iterable, List, Optional

from iep_tracker.core.dates import days_since, utc_today
from iep_tracker.core.roster import FREQUENCY_DAYS, AssessmentResult, Goal


class StatusKind:
    """Assessment state of a goal."""
    CURRENT = "current"
    DUE = "due"
    OVERDUE = "overdue"


AssessmentStatus = namedtuple(
    "AssessmentStatus",
    [
        "status",          # StatusKind value
        "message",         # "Due in 2 days", "Due today", "1 day overdue", "No assessments yet"
        "days_until_due",  # int or None
        "days_overdue",    # int or None
    ],
)

DateBucket = namedtuple("DateBucket", ["date", "passes", "fails", "total"])

DailyPassRate = namedtuple("DailyPassRate", ["date", "pass_rate"])

TodayStats = namedtuple("TodayStats", ["passes", "fails", "total"])

_FREQUENCY_LABELS = {
    "daily": "Daily",
    "weekly": "Weekly",
    "biweekly": "Bi-weekly",
    "monthly": "Monthly",
    "quarterly": "Quarterly",
}


def _plural_days(n: int) -> str:
    return f"{n} day{'' if n == 1 else 's'}"


def frequency_in_days(goal: Goal) -> int:
    """Expected days between assessments for the goal's frequency."""
    if goal.frequency == "custom":
        return goal.custom_frequency_days
    return FREQUENCY_DAYS[goal.frequency]


def format_frequency(goal: Goal) -> str:
    if goal.frequency == "custom":
        return f"Every {goal.custom_frequency_days} days"
    return _FREQUENCY_LABELS[goal.frequency]


def last_assessment(goal: Goal) -> Optional[AssessmentResult]:
    """Most recent assessment result, or None. Among equal dates the earliest recorded wins."""
    if not goal.assessment_results:
        return None
    return max(goal.assessment_results, key=lambda r: r.date)


def assessment_status(goal: Goal, today: Optional[date] = None) -> AssessmentStatus:
    """Current/due/overdue state of a goal relative to today.

    Weekends are skipped only for daily goals.
    """
    last = last_assessment(goal)
    if last is None:
        return AssessmentStatus(StatusKind.OVERDUE, "No assessments yet", None, None)

    frequency_days = frequency_in_days(goal)
    exclude_weekends = goal.frequency == "daily"
    elapsed = days_since(last.date, exclude_weekends, today=today)

    if elapsed < frequency_days:
        until_due = frequency_days - elapsed
        return AssessmentStatus(StatusKind.CURRENT, f"Due in {_plural_days(until_due)}", until_due, 0)
    if elapsed == frequency_days:
        return AssessmentStatus(StatusKind.DUE, "Due today", 0, 0)
    overdue = elapsed - frequency_days
    return AssessmentStatus(StatusKind.OVERDUE, f"{_plural_days(overdue)} overdue", 0, overdue)


def group_by_date(results: Iterable[AssessmentResult]) -> List[DateBucket]:
    """Per-date pass/fail counts, newest date first."""
    counts: Dict[date, List[int]] = {}
    for result in results:
        bucket = counts.setdefault(result.date, [0, 0])
        if result.result == "pass":
            bucket[0] += 1
        else:
            bucket[1] += 1
    return [
        DateBucket(day, passes, fails, passes + fails)
        for day, (passes, fails) in sorted(counts.items(), key=lambda item: item[0], reverse=True)
    ]


def daily_pass_rate(goal: Goal) -> List[DailyPassRate]:
    """Pass percentage per assessment date, oldest first (trend chart order)."""
    return [
        DailyPassRate(bucket.date, bucket.passes / bucket.total * 100)
        for bucket in reversed(group_by_date(goal.assessment_results))
    ]


def last_session_rate(goal: Goal) -> Optional[float]:
    """Pass percentage of the most recent assessment date only, not the all-time average."""
    rates = daily_pass_rate(goal)
    if not rates:
        return None
    return rates[-1].pass_rate


def today_stats(goal: Goal, today: Optional[date] = None) -> TodayStats:
    today = today or utc_today()
    passes = fails = 0
    for result in goal.assessment_results:
        if result.date != today:
            continue
        if result.result == "pass":
            passes += 1
        else:
            fails += 1
    return TodayStats(passes, fails, passes + fails)
