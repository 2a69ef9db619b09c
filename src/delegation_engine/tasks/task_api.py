# src/delegation_engine/tasks/task_api.py

from __future__ import annotations

import logging
from datetime import datetime, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ..core.errors import NotFoundError
from ..core.state import AppState
from .overdue import overdue_days, overdue_display
from .recurrence import describe_recurrence, template_status_label

logger = logging.getLogger(__name__)


def display_zone(state: AppState) -> tzinfo:
    """Timezone used to decide which calendar day "now" is (settings.timezone)."""
    name = str(getattr(state.settings, "timezone", "UTC") or "UTC")
    try:
        return ZoneInfo(name)
    except ZoneInfoNotFoundError:
        logger.warning("Unknown timezone %r; falling back to UTC", name)
        return ZoneInfo("UTC")


def task_overdue_summary(state: AppState, task_id: int, now: datetime | None = None) -> tuple[int | None, str | None]:
    """
    (overdue days, display string) for a stored task, evaluated in the display zone.
    Raises NotFoundError for an unknown task.
    """
    task = state.store.get_task(task_id)
    if task is None:
        raise NotFoundError("task", task_id)
    if now is None:
        now = datetime.now(display_zone(state))
    tz = display_zone(state)
    return overdue_days(task, now, tz), overdue_display(task, now, tz)


def describe_template(state: AppState, template_id: int) -> str:
    """One-line summary, e.g. "#3 Weekly report: Weekly (Monday) [Paused]"."""
    template = state.store.get_template(template_id)
    if template is None:
        raise NotFoundError("template", template_id)
    return f"#{template.id} {template.title}: {describe_recurrence(template)} [{template_status_label(template)}]"
