# tests/test_overdue.py

from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

from delegation_engine.tasks.overdue import (
    can_complete,
    can_complete_after,
    is_overdue,
    overdue_days,
    overdue_display,
)
from delegation_engine.tasks.task_models import RecurringTemplate, Task, TaskStatus


def day(d: int, hh: int = 9) -> datetime:
    return datetime(2024, 11, d, hh, 0, tzinfo=UTC)


def make_task(original: datetime | None = None, due: datetime | None = None, **kw) -> Task:
    original = day(11) if original is None else original
    return Task(
        id=1,
        title="water plants",
        status=kw.pop("status", TaskStatus.PENDING),
        due_date=due if due is not None else original,
        original_due_date=original,
        **kw,
    )


def test_counts_days_since_original_due_date() -> None:
    task = make_task()
    assert overdue_days(task, day(14)) == 3
    assert overdue_days(task, day(12)) == 1


def test_due_today_is_not_overdue() -> None:
    assert overdue_days(make_task(), day(11, 23)) is None


def test_before_due_is_not_overdue() -> None:
    assert overdue_days(make_task(), day(5)) is None


def test_rescheduled_forward_caps_the_count() -> None:
    task = make_task(original=day(11), due=day(14))
    assert overdue_days(task, day(12)) == 1
    assert overdue_days(task, day(13)) == 2
    assert overdue_days(task, day(14)) == 2
    assert overdue_days(task, day(15)) == 2
    assert overdue_days(task, day(30)) == 2


def test_rescheduled_by_one_day_never_overdue() -> None:
    task = make_task(original=day(11), due=day(12))
    assert overdue_days(task, day(12)) is None
    assert overdue_days(task, day(13)) is None


def test_rescheduled_earlier_has_no_cap() -> None:
    task = make_task(original=day(11), due=day(9))
    assert overdue_days(task, day(20)) == 9


def test_completed_task_is_never_overdue() -> None:
    done = make_task(status=TaskStatus.COMPLETED, completed_at=day(12))
    assert overdue_days(done, day(20)) is None
    assert not is_overdue(done, day(20))


def test_completed_at_alone_clears_overdue() -> None:
    task = make_task(completed_at=day(12))
    assert overdue_days(task, day(20)) is None


def test_missing_original_due_date() -> None:
    task = Task(id=1, title="x", status=TaskStatus.PENDING, due_date=None, original_due_date=None)
    assert overdue_days(task, day(20)) is None


def test_time_of_day_is_ignored() -> None:
    task = make_task(original=day(11, 23))
    assert overdue_days(task, day(12, 0)) == 1


def test_display_zone_decides_the_calendar_day() -> None:
    eastern = timezone(timedelta(hours=-5))
    # 03:00 UTC on the 11th is still the 10th in UTC-5.
    task = make_task(original=datetime(2024, 11, 11, 3, 0, tzinfo=UTC))
    now = datetime(2024, 11, 11, 23, 0, tzinfo=UTC)
    assert overdue_days(task, now) is None
    assert overdue_days(task, now, tz=eastern) == 1


def test_overdue_display() -> None:
    task = make_task()
    assert overdue_display(task, day(12)) == "1 day overdue"
    assert overdue_display(task, day(16)) == "5 days overdue"
    assert overdue_display(task, day(11)) is None


def make_template(unlock: int) -> RecurringTemplate:
    return RecurringTemplate(
        id=7,
        title="t",
        kind="weekly",
        interval=1,
        start_date=day(1),
        unlock_days_before_due=unlock,
    )


def test_unlock_window() -> None:
    task = make_task(original=day(20), recurring_template_id=7)
    template = make_template(2)
    assert can_complete_after(task, template) == day(18)
    assert not can_complete(task, template, day(17))
    assert can_complete(task, template, day(18))
    assert can_complete(task, template, day(25))


def test_no_unlock_restriction() -> None:
    task = make_task(original=day(20), recurring_template_id=7)
    assert can_complete_after(task, make_template(0)) is None
    assert can_complete(task, make_template(0), day(1))


def test_non_recurring_task_is_never_locked() -> None:
    task = make_task(original=day(20))
    assert can_complete_after(task, make_template(3)) is None
    assert can_complete(task, None, day(1))


def test_unlock_window_mixes_naive_and_aware_values() -> None:
    task = make_task(original=datetime(2024, 11, 20, 9, 0), recurring_template_id=7)
    template = make_template(2)
    assert not can_complete(task, template, day(17))
    assert can_complete(task, template, day(18))
