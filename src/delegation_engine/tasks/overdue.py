# src/delegation_engine/tasks/overdue.py

"""
Overdue tracking.

Lateness is anchored to the task's original due date, never the current one.
When the task has been rescheduled forward, the count is capped and stops
growing on the rescheduled date itself:

    original 11-11, rescheduled to 14-11
      12-11 -> 1, 13-11 -> 2, 14-11 and later -> 2

All functions are pure; the caller passes `now`.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, tzinfo

from ..core.ports import as_utc
from .task_models import RecurringTemplate, Task, TaskStatus


def _local_date(value: datetime, tz: tzinfo | None) -> date:
    if tz is not None and value.tzinfo is not None:
        value = value.astimezone(tz)
    return value.date()


def _whole_days(start: date, end: date) -> int:
    return (end - start).days


def overdue_days(task: Task, now: datetime, tz: tzinfo | None = None) -> int | None:
    """
    Days overdue relative to original_due_date, or None when not overdue.

    tz: optional zone used to strip time-of-day from both `now` and the task dates.
    """
    if task.completed_at is not None or task.status == TaskStatus.COMPLETED:
        return None

    if task.original_due_date is None:
        return None

    today = _local_date(now, tz)
    original = _local_date(task.original_due_date, tz)
    if today < original:
        return None

    overdue = _whole_days(original, today)

    if task.due_date is not None:
        rescheduled = _local_date(task.due_date, tz)
        if rescheduled > original:
            max_overdue = max(0, _whole_days(original, rescheduled) - 1)
            if today >= rescheduled:
                return max_overdue if max_overdue > 0 else None
            overdue = min(overdue, max_overdue)

    # Due today is not overdue yet.
    return overdue if overdue > 0 else None


def overdue_display(task: Task, now: datetime, tz: tzinfo | None = None) -> str | None:
    days = overdue_days(task, now, tz)
    if not days:
        return None
    return "1 day overdue" if days == 1 else f"{days} days overdue"


def is_overdue(task: Task, now: datetime, tz: tzinfo | None = None) -> bool:
    return bool(overdue_days(task, now, tz))


def can_complete_after(task: Task, template: RecurringTemplate | None) -> datetime | None:
    """
    Earliest moment a recurring instance may be completed.

    None means there is no restriction (non-recurring task, no due date,
    or unlock_days_before_due == 0).
    """
    if template is None or task.recurring_template_id is None or task.due_date is None:
        return None
    if template.unlock_days_before_due <= 0:
        return None
    return task.due_date - timedelta(days=template.unlock_days_before_due)


def can_complete(task: Task, template: RecurringTemplate | None, now: datetime) -> bool:
    unlock_at = can_complete_after(task, template)
    if unlock_at is None:
        return True
    return as_utc(now) >= as_utc(unlock_at)
