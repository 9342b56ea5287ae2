"""Read-side status bucketing for the task dashboard."""

from datetime import date
from typing import Iterable, Optional

from taskdesk.models.task import Task, TaskBuckets, TaskStatus

UPCOMING = "upcoming"
OVERDUE = "overdue"
FLAGGED = "flagged"

URGENCY_RANK = {
    "very high": 1,
    "high": 2,
    "medium": 3,
    "low": 4,
    "very low": 5,
}
UNKNOWN_URGENCY_RANK = 999


def status_group(status: Optional[str]) -> str:
    """Bucket a display status. Unrecognized values fall back to upcoming."""
    normalized = (status or "").lower().strip()

    if normalized in ("today", "in-progress"):
        return UPCOMING
    if normalized == "overdue":
        return OVERDUE
    if normalized == FLAGGED:
        return FLAGGED

    return UPCOMING


def display_status(task: Task, today: date) -> str:
    """Status as shown on the dashboard; overdue is derived from the due date."""
    status = (task.status or "").strip()

    if status == TaskStatus.FLAGGED.value:
        return "flagged"
    if status == TaskStatus.OVERDUE.value:
        return "overdue"
    if status == TaskStatus.IN_PROGRESS.value and task.due_date is not None:
        if task.due_date < today:
            return "overdue"
        if task.due_date == today:
            return "today"
    return status.lower()


def urgency_rank(urgency: Optional[str]) -> int:
    return URGENCY_RANK.get((urgency or "").lower().strip(), UNKNOWN_URGENCY_RANK)


def sort_key(task: Task) -> tuple:
    """Urgency first, then due date; tasks without a due date go last."""
    return (
        urgency_rank(task.urgency),
        task.due_date is None,
        task.due_date or date.max,
    )


def group_tasks(tasks: Iterable[Task], today: date, next_cursor: Optional[str] = None) -> TaskBuckets:
    """Group open tasks into upcoming/overdue/flagged; completed tasks are left out."""
    grouped: dict[str, list[Task]] = {UPCOMING: [], OVERDUE: [], FLAGGED: []}

    for task in tasks:
        if task.is_completed:
            continue
        grouped[status_group(display_status(task, today))].append(task)

    for bucket in grouped.values():
        bucket.sort(key=sort_key)

    return TaskBuckets(
        upcoming=grouped[UPCOMING],
        overdue=grouped[OVERDUE],
        flagged=grouped[FLAGGED],
        next_cursor=next_cursor,
    )


def format_relative_date(due: Optional[date], today: date) -> str:
    """Dashboard label for a due date relative to today."""
    if due is None:
        return ""

    diff_days = (due - today).days

    if diff_days < 0:
        days = abs(diff_days)
        return f"{days} {'day' if days == 1 else 'days'} ago"
    if diff_days == 0:
        return "Today"
    if diff_days == 1:
        return "Tomorrow"
    if diff_days < 7:
        return f"In {diff_days} days"

    return due.isoformat()
