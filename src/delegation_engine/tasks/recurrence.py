# src/delegation_engine/tasks/recurrence.py

"""
Recurrence calculator.

Pure functions mapping a template rule + last due date to the next due date.
`None` means the series has ended (paused, ended, past end_date or unknown kind);
it is a normal result, not an error.

Uses dateutil.relativedelta for calendar month/year arithmetic, which clamps
to the last day of the target month (Jan 31 + 1 month = Feb 28/29).
"""

from __future__ import annotations

import calendar
from datetime import date, datetime, timedelta

from dateutil.relativedelta import relativedelta

from ..core.errors import ValidationError
from .task_models import RecurrenceKind, RecurringTemplate

_DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]


def _calendar_date(value: date | datetime) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def _sunday_based_weekday(value: datetime) -> int:
    # datetime.weekday(): Monday = 0; rules use Sunday = 0.
    return (value.weekday() + 1) % 7


def _clamp_day(year: int, month: int, day: int) -> int:
    return min(day, calendar.monthrange(year, month)[1])


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def next_due_date(
    template: RecurringTemplate,
    last_due_date: datetime,
    now: datetime | None = None,
) -> datetime | None:
    """
    Next occurrence after last_due_date, or None when the series is over.

    `now` is accepted for call-site symmetry with the workflow; the arithmetic
    never reads the clock. Time of day of last_due_date is preserved.
    """
    if template.is_paused or template.is_ended:
        return None

    end = _calendar_date(template.end_date) if template.end_date is not None else None
    if end is not None and _calendar_date(last_due_date) >= end:
        return None

    kind = template.kind
    interval = int(template.interval)

    if kind in (RecurrenceKind.DAILY, RecurrenceKind.CUSTOM):
        nxt = last_due_date + timedelta(days=interval)

    elif kind == RecurrenceKind.WEEKLY:
        nxt = last_due_date + timedelta(days=interval * 7)
        if template.day_of_week is not None:
            shift = (int(template.day_of_week) - _sunday_based_weekday(nxt) + 7) % 7
            nxt = nxt + timedelta(days=shift)

    elif kind == RecurrenceKind.MONTHLY:
        nxt = last_due_date + relativedelta(months=interval)
        if template.day_of_month is not None:
            nxt = nxt.replace(day=_clamp_day(nxt.year, nxt.month, int(template.day_of_month)))

    elif kind == RecurrenceKind.YEARLY:
        nxt = last_due_date + relativedelta(years=interval)
        if template.month is not None and template.day_of_month is not None:
            month = int(template.month)
            day = int(template.day_of_month)
            if month == 2 and day == 29 and not calendar.isleap(nxt.year):
                day = 28
            # month and day go in together so an intermediate date is never invalid
            nxt = nxt.replace(month=month, day=_clamp_day(nxt.year, month, day))

    else:
        return None

    if end is not None and _calendar_date(nxt) > end:
        return None

    return nxt


def validate_template_rule(
    *,
    kind: str,
    interval: int,
    start_date: datetime,
    day_of_week: int | None = None,
    day_of_month: int | None = None,
    month: int | None = None,
    end_date: date | None = None,
    unlock_days_before_due: int = 0,
) -> None:
    """Raise ValidationError for a malformed recurrence rule."""
    try:
        RecurrenceKind(kind)
    except ValueError:
        raise ValidationError(f"unknown recurrence kind: {kind!r}") from None

    if not _is_int(interval) or interval < 1:
        raise ValidationError("interval must be a positive integer")
    if day_of_week is not None and not (_is_int(day_of_week) and 0 <= day_of_week <= 6):
        raise ValidationError("day_of_week must be an integer within 0..6")
    if day_of_month is not None and not (_is_int(day_of_month) and 1 <= day_of_month <= 31):
        raise ValidationError("day_of_month must be an integer within 1..31")
    if month is not None and not (_is_int(month) and 1 <= month <= 12):
        raise ValidationError("month must be an integer within 1..12")
    if not _is_int(unlock_days_before_due) or unlock_days_before_due < 0:
        raise ValidationError("unlock_days_before_due must be an integer >= 0")
    if not isinstance(start_date, datetime):
        raise ValidationError("start_date must be a datetime")
    if end_date is not None and not isinstance(end_date, date):
        raise ValidationError("end_date must be a date")
    if end_date is not None and _calendar_date(end_date) < _calendar_date(start_date):
        raise ValidationError("end_date must not be before start_date")


def _ordinal_suffix(day: int) -> str:
    if day == 1:
        return "st"
    if day == 2:
        return "nd"
    if day == 3:
        return "rd"
    return "th"


def describe_recurrence(template: RecurringTemplate) -> str:
    """Human-readable pattern, e.g. "Weekly (Monday)" or "every 2 months (day 15th)"."""
    every = f"every {template.interval} " if template.interval > 1 else ""
    kind = template.kind

    if kind == RecurrenceKind.DAILY:
        return f"{every}days" if every else "Daily"

    if kind == RecurrenceKind.WEEKLY:
        if template.day_of_week is not None:
            name = _DAY_NAMES[template.day_of_week]
            return f"{every}weeks ({name})" if every else f"Weekly ({name})"
        return f"{every}weeks" if every else "Weekly"

    if kind == RecurrenceKind.MONTHLY:
        if template.day_of_month is not None:
            day = template.day_of_month
            label = f"day {day}{_ordinal_suffix(day)}"
            return f"{every}months ({label})" if every else f"Monthly ({label})"
        return f"{every}months" if every else "Monthly"

    if kind == RecurrenceKind.YEARLY:
        if template.month is not None and template.day_of_month is not None:
            day = template.day_of_month
            label = f"{calendar.month_name[template.month]} {day}{_ordinal_suffix(day)}"
            return f"{every}years ({label})" if every else f"Yearly ({label})"
        return f"{every}years" if every else "Yearly"

    if kind == RecurrenceKind.CUSTOM:
        return f"Every {template.interval} days"

    return "Recurring"


def template_status_label(template: RecurringTemplate) -> str:
    if template.is_ended:
        return "Ended"
    if template.is_paused:
        return "Paused"
    return "Active"
