"""
Progress report summaries for a student and the roster overview.
"""
from collections import namedtuple
from datetime import date
from typing import Dict, Iterable, List, Optional

from iep_tracker.core.dates import utc_today
from iep_tracker.core.roster import Goal, Student
from iep_tracker.core.status import (
    StatusKind,
    assessment_status,
    daily_pass_rate,
    format_frequency,
    last_assessment,
    last_session_rate,
    today_stats,
)

GoalSummary = namedtuple(
    "GoalSummary",
    [
        "goal",
        "total_assessments",
        "total_passes",
        "pass_percentage",        # badge value: last session's rate, rounded
        "last_assessment_date",   # date or None
        "daily_pass_rates",       # List[DailyPassRate], oldest first
        "today",                  # TodayStats for the report date
    ],
)

GOAL_THRESHOLD_PERCENT = 75


def round_half_up(value: float) -> int:
    return int(value + 0.5) if value >= 0 else -int(-value + 0.5)


def goal_summary(goal: Goal, today: Optional[date] = None) -> GoalSummary:
    """Summary of one goal. The badge percentage comes from the last session, not the all-time average."""
    total = len(goal.assessment_results)
    passes = sum(1 for r in goal.assessment_results if r.result == "pass")
    last = last_assessment(goal)
    last_rate = last_session_rate(goal)
    percentage = round_half_up(last_rate) if last_rate is not None else 0
    return GoalSummary(
        goal=goal,
        total_assessments=total,
        total_passes=passes,
        pass_percentage=percentage,
        last_assessment_date=last.date if last else None,
        daily_pass_rates=daily_pass_rate(goal),
        today=today_stats(goal, today=today),
    )


def goals_above_threshold(student: Student, threshold: float = GOAL_THRESHOLD_PERCENT) -> int:
    """Percentage of the student's goals whose most recent session scored above threshold."""
    if not student.goals:
        return 0
    above = 0
    for goal in student.goals:
        last_rate = last_session_rate(goal)
        if last_rate is not None and last_rate > threshold:
            above += 1
    return round_half_up(above / len(student.goals) * 100)


def student_status_counts(student: Student, today: Optional[date] = None) -> Dict[str, int]:
    """Number of goals due today and overdue. Goals never assessed count as overdue."""
    due_today = 0
    overdue = 0
    for goal in student.goals:
        status = assessment_status(goal, today=today)
        if status.status == StatusKind.DUE:
            due_today += 1
        elif status.status == StatusKind.OVERDUE:
            overdue += 1
    return {"due_today": due_today, "overdue": overdue}


def overall_success_rate(student: Student) -> float:
    """All-time pass percentage across every goal of the student."""
    total = 0
    passes = 0
    for goal in student.goals:
        total += len(goal.assessment_results)
        passes += sum(1 for r in goal.assessment_results if r.result == "pass")
    if total == 0:
        return 0.0
    return passes / total * 100


def sort_by_last_name(students: Iterable[Student]) -> List[Student]:
    """Order students by the part of "Last, First" before the comma."""
    return sorted(students, key=lambda s: s.student_name.split(",")[0].strip().lower())


def render_student_report(student: Student, today: Optional[date] = None) -> str:
    """Plain-text progress report for one student."""
    today = today or utc_today()
    summaries = [goal_summary(goal, today=today) for goal in student.goals]
    lines = [
        f"IEP Progress Report: {student.student_name} (ID {student.student_id})",
        f"Report date: {today.isoformat()}",
        f"Goals: {len(student.goals)}  "
        f"Assessment days: {sum(len(s.daily_pass_rates) for s in summaries)}  "
        f"Goals above {GOAL_THRESHOLD_PERCENT}%: {goals_above_threshold(student)}%",
        "",
    ]
    for summary in summaries:
        goal = summary.goal
        status = assessment_status(goal, today=today)
        last_date = summary.last_assessment_date.isoformat() if summary.last_assessment_date else "never"
        lines.append(f"* {goal.title} [{format_frequency(goal)}] {goal.start_date} - {goal.end_date}")
        if goal.description and goal.description != goal.title:
            lines.append(f"  {goal.description}")
        lines.append(
            f"  Last session: {summary.pass_percentage}%  "
            f"Assessments: {summary.total_assessments} ({summary.total_passes} passed)  "
            f"Last assessed: {last_date}  Status: {status.message}"
        )
        if summary.today.total:
            lines.append(f"  Today: {summary.today.passes} passed, {summary.today.fails} failed")
        for rate in summary.daily_pass_rates:
            lines.append(f"    {rate.date.isoformat()}  {rate.pass_rate:6.2f}%")
        for note in goal.notes:
            lines.append(f"  Note {note.date.isoformat()}: {note.note}")
        lines.append("")
    return "\n".join(lines).rstrip() + "\n"
