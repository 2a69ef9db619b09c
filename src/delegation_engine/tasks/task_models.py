# src/delegation_engine/tasks/task_models.py

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import StrEnum
from typing import Any


class TaskStatus(StrEnum):
    """
    Task instance status.

    Terminal states: completed, not_applicable.
    """

    PENDING = "pending"
    RESCHEDULING = "rescheduling"
    COMPLETED = "completed"
    NOT_APPLICABLE = "not_applicable"

    @classmethod
    def from_db(cls, raw: str | None) -> TaskStatus:
        if not raw:
            return cls.PENDING
        try:
            return cls(raw)
        except ValueError:
            return cls.PENDING

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.NOT_APPLICABLE)


class RecurrenceKind(StrEnum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"
    CUSTOM = "custom"


class RescheduleStatus(StrEnum):
    """pending -> approved | rejected; never reversed."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ChangeType(StrEnum):
    STATUS = "status"
    ASSIGNMENT = "assignment"
    DUE_DATE = "due_date"
    RESCHEDULE_REQUEST = "reschedule_request"


@dataclass(slots=True)
class Task:
    id: int
    title: str
    status: TaskStatus
    due_date: datetime | None
    original_due_date: datetime | None
    completed_at: datetime | None = None
    recurring_template_id: int | None = None

    description: str | None = None
    assigned_to: str | None = None
    created_by: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(slots=True)
class RecurringTemplate:
    """
    Rule object defining how a task series repeats.

    Notes:
    - interval unit depends on kind (days for daily/custom, weeks, months, years)
    - day_of_week uses 0 = Sunday .. 6 = Saturday
    - end_date is a calendar day and is inclusive
    - is_ended is terminal; is_paused can be toggled while not ended
    """

    id: int
    title: str
    kind: str
    interval: int
    start_date: datetime
    day_of_week: int | None = None
    day_of_month: int | None = None
    month: int | None = None
    end_date: date | None = None
    unlock_days_before_due: int = 0
    is_paused: bool = False
    is_ended: bool = False
    last_generated_task_id: int | None = None

    description: str | None = None
    assigned_to: str | None = None
    created_by: str | None = None
    created_at: datetime | None = None


@dataclass(slots=True)
class RescheduleRequest:
    id: int
    task_id: int
    requested_by: str
    requested_due_date: datetime
    current_due_date: datetime | None
    status: RescheduleStatus
    created_at: datetime
    expires_at: datetime

    approved_by: str | None = None
    approved_at: datetime | None = None
    rejected_by: str | None = None
    rejected_at: datetime | None = None
    rejection_reason: str | None = None
    auto_approved: bool = False


@dataclass(slots=True)
class HistoryEntry:
    id: int
    task_id: int
    change_type: ChangeType
    old_value: str | None
    new_value: str | None
    changed_by: str
    created_at: datetime
    metadata: dict[str, Any] = field(default_factory=dict)
