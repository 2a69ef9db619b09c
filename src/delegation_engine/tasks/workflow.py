# src/delegation_engine/tasks/workflow.py

"""
Reschedule workflow and template lifecycle.

Request state machine:
  pending -> approved   (approver action, or expiry sweep as the system actor)
  pending -> rejected   (approver action)
No transition leaves approved/rejected.

Every multi-record mutation runs inside repo.atomic(): the conditional status
transition, the task due_date change and the history entry land together or not
at all. The conditional update ("... WHERE status = 'pending'") decides races:
exactly one resolver wins, the loser sees ConcurrencyConflict (the sweep turns
that into a silent skip).

Template lifecycle gates recurrence generation:
  active <-> paused, and either -> ended (terminal).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any

from ..core import auth
from ..core.errors import (
    ConcurrencyConflict,
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from ..core.ports import Authorizer, Clock, DelegationRepo, allow_all, as_utc, utc_now
from .overdue import can_complete, can_complete_after
from .recurrence import next_due_date, validate_template_rule
from .task_models import (
    ChangeType,
    HistoryEntry,
    RecurrenceKind,
    RecurringTemplate,
    RescheduleRequest,
    RescheduleStatus,
    Task,
    TaskStatus,
)

logger = logging.getLogger(__name__)

DEFAULT_EXPIRY_DAYS = 7
DEFAULT_SYSTEM_ACTOR = "system"

_OPEN_STATUSES = (TaskStatus.PENDING, TaskStatus.RESCHEDULING)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


@dataclass(slots=True)
class SweepReport:
    """Outcome of one expiry sweep, per request id."""

    approved: list[int] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)
    failed: dict[int, str] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return len(self.approved) + len(self.skipped) + len(self.failed)


class RescheduleWorkflow:
    def __init__(
        self,
        repo: DelegationRepo,
        *,
        clock: Clock = utc_now,
        authorize: Authorizer = allow_all,
        default_expiry_days: int = DEFAULT_EXPIRY_DAYS,
        system_actor_id: str = DEFAULT_SYSTEM_ACTOR,
    ) -> None:
        if default_expiry_days <= 0:
            raise ValidationError("default_expiry_days must be positive")
        if not system_actor_id:
            raise ValidationError("system_actor_id must be non-empty")
        self._repo = repo
        self._clock = clock
        self._authorize = authorize
        self._default_expiry_days = int(default_expiry_days)
        self.system_actor_id = system_actor_id

    # ---- helpers ----

    def _now(self) -> datetime:
        return as_utc(self._clock())

    def _require(self, actor_id: str | None, permission: str, record: Any) -> str:
        if not actor_id:
            raise PermissionDeniedError("not authenticated")
        if not self._authorize(actor_id, permission, record):
            raise PermissionDeniedError(f"{actor_id} may not {permission}")
        return actor_id

    def _task(self, task_id: int) -> Task:
        task = self._repo.get_task(task_id)
        if task is None:
            raise NotFoundError("task", task_id)
        return task

    def _template(self, template_id: int) -> RecurringTemplate:
        template = self._repo.get_template(template_id)
        if template is None:
            raise NotFoundError("template", template_id)
        return template

    def _request(self, request_id: int) -> RescheduleRequest:
        request = self._repo.get_request(request_id)
        if request is None:
            raise NotFoundError("reschedule request", request_id)
        return request

    # ---- reschedule requests ----

    def create_request(
        self,
        task_id: int,
        requested_due_date: datetime,
        requested_by: str | None,
        *,
        expires_in_days: int | None = None,
    ) -> RescheduleRequest:
        """
        Ask to move a task's due date. The task itself is untouched until resolution.

        expires_in_days: auto-approval horizon (defaults to the workflow setting).
        """
        days = self._default_expiry_days if expires_in_days is None else expires_in_days
        if days <= 0:
            raise ValidationError("expires_in_days must be positive")
        if not isinstance(requested_due_date, datetime):
            raise ValidationError("requested_due_date must be a datetime")
        requested_due_date = as_utc(requested_due_date)

        task = self._task(task_id)
        actor = self._require(requested_by, auth.REQUEST_RESCHEDULE, task)
        if task.status.is_terminal:
            raise InvalidStateError(f"task {task_id} is {task.status.value}")

        now = self._now()
        request_id = self._repo.create_request(
            {
                "task_id": task.id,
                "requested_by": actor,
                "requested_due_date": requested_due_date,
                "current_due_date": task.due_date,
                "status": RescheduleStatus.PENDING,
                "created_at": now,
                "expires_at": now + timedelta(days=days),
            }
        )
        logger.info(
            "Reschedule request %s created task=%s by=%s requested=%s",
            request_id,
            task.id,
            actor,
            _iso(requested_due_date),
        )
        return self._request(request_id)

    def _apply_approval(
        self,
        request: RescheduleRequest,
        actor_id: str,
        now: datetime,
        *,
        auto: bool,
    ) -> None:
        with self._repo.atomic():
            landed = self._repo.try_transition_request(
                request.id,
                expected=RescheduleStatus.PENDING,
                fields={
                    "status": RescheduleStatus.APPROVED,
                    "approved_by": actor_id,
                    "approved_at": now,
                    "auto_approved": auto,
                },
            )
            if not landed:
                raise ConcurrencyConflict(f"reschedule request {request.id} already resolved")

            task = self._task(request.task_id)
            self._repo.update_task(task.id, {"due_date": request.requested_due_date}, at=now)

            metadata: dict[str, Any] = {"action": "approved", "request_id": request.id}
            if auto:
                metadata["auto_approved"] = True
            self._repo.append(
                task.id,
                ChangeType.RESCHEDULE_REQUEST,
                _iso(task.due_date),
                _iso(request.requested_due_date),
                metadata,
                actor_id,
                at=now,
            )

    def approve_request(self, request_id: int, approver_id: str | None) -> RescheduleRequest:
        request = self._request(request_id)
        actor = self._require(approver_id, auth.APPROVE_RESCHEDULE, request)
        if request.status != RescheduleStatus.PENDING:
            raise InvalidStateError(f"reschedule request {request_id} is {request.status.value}")

        self._apply_approval(request, actor, self._now(), auto=False)
        logger.info("Reschedule request %s approved by %s", request_id, actor)
        return self._request(request_id)

    def reject_request(
        self,
        request_id: int,
        rejector_id: str | None,
        reason: str | None = None,
    ) -> RescheduleRequest:
        request = self._request(request_id)
        actor = self._require(rejector_id, auth.REJECT_RESCHEDULE, request)
        if request.status != RescheduleStatus.PENDING:
            raise InvalidStateError(f"reschedule request {request_id} is {request.status.value}")

        reason = (reason or "").strip() or None
        now = self._now()
        with self._repo.atomic():
            landed = self._repo.try_transition_request(
                request.id,
                expected=RescheduleStatus.PENDING,
                fields={
                    "status": RescheduleStatus.REJECTED,
                    "rejected_by": actor,
                    "rejected_at": now,
                    "rejection_reason": reason,
                },
            )
            if not landed:
                raise ConcurrencyConflict(f"reschedule request {request_id} already resolved")

            self._repo.append(
                request.task_id,
                ChangeType.RESCHEDULE_REQUEST,
                _iso(request.current_due_date),
                _iso(request.requested_due_date),
                {"action": "rejected", "request_id": request.id, "rejection_reason": reason},
                actor,
                at=now,
            )

        logger.info("Reschedule request %s rejected by %s", request_id, actor)
        return self._request(request_id)

    def sweep_expired(self, now: datetime | None = None, *, limit: int | None = None) -> SweepReport:
        """
        Auto-approve every pending request whose expires_at <= now.

        Each row gets its own transaction and conditional update; a row that lost
        a race is skipped, a row that fails is logged and reported, and neither
        stops the rest. Running it again with nothing new expired changes nothing.
        """
        now = self._now() if now is None else as_utc(now)
        report = SweepReport()

        for request in self._repo.list_expired_pending(now=now, limit=limit):
            try:
                self._apply_approval(request, self.system_actor_id, now, auto=True)
            except ConcurrencyConflict:
                logger.debug("Sweep skipped request %s (already resolved)", request.id)
                report.skipped.append(request.id)
            except Exception as exc:
                logger.exception("Sweep failed to auto-approve request %s", request.id)
                report.failed[request.id] = str(exc) or exc.__class__.__name__
            else:
                logger.info("Reschedule request %s auto-approved (expired %s)", request.id, _iso(request.expires_at))
                report.approved.append(request.id)

        return report

    def list_requests(
        self,
        *,
        task_id: int | None = None,
        status: RescheduleStatus | None = None,
        requested_by: str | None = None,
    ) -> list[RescheduleRequest]:
        return self._repo.list_requests(task_id=task_id, status=status, requested_by=requested_by)

    def pending_count(self) -> int:
        return len(self._repo.list_requests(status=RescheduleStatus.PENDING))

    # ---- templates ----

    def create_template(
        self,
        *,
        title: str,
        kind: str,
        interval: int,
        start_date: datetime,
        created_by: str | None,
        description: str | None = None,
        assigned_to: str | None = None,
        day_of_week: int | None = None,
        day_of_month: int | None = None,
        month: int | None = None,
        end_date: date | None = None,
        unlock_days_before_due: int = 0,
    ) -> tuple[RecurringTemplate, Task]:
        """Create a template together with its first instance (due on start_date)."""
        actor = self._require(created_by, auth.MANAGE_TEMPLATES, None)
        if not title or not title.strip():
            raise ValidationError("title is required")
        validate_template_rule(
            kind=kind,
            interval=interval,
            start_date=start_date,
            day_of_week=day_of_week,
            day_of_month=day_of_month,
            month=month,
            end_date=end_date,
            unlock_days_before_due=unlock_days_before_due,
        )
        start_date = as_utc(start_date)
        now = self._now()

        # Pins only apply to the kinds that use them.
        if kind != RecurrenceKind.WEEKLY:
            day_of_week = None
        if kind not in (RecurrenceKind.MONTHLY, RecurrenceKind.YEARLY):
            day_of_month = None
        if kind != RecurrenceKind.YEARLY:
            month = None

        with self._repo.atomic():
            template_id = self._repo.create_template(
                {
                    "title": title.strip(),
                    "description": description,
                    "assigned_to": assigned_to or actor,
                    "created_by": actor,
                    "kind": RecurrenceKind(kind),
                    "interval": interval,
                    "day_of_week": day_of_week,
                    "day_of_month": day_of_month,
                    "month": month,
                    "start_date": start_date,
                    "end_date": end_date,
                    "unlock_days_before_due": unlock_days_before_due,
                },
                at=now,
            )
            task_id = self._repo.create_task(
                {
                    "title": title.strip(),
                    "description": description,
                    "assigned_to": assigned_to or actor,
                    "created_by": actor,
                    "status": TaskStatus.PENDING,
                    "due_date": start_date,
                    "original_due_date": start_date,
                    "recurring_template_id": template_id,
                },
                at=now,
            )
            self._repo.update_template(template_id, {"last_generated_task_id": task_id})

        logger.info("Template %s created (%s every %s) first task=%s", template_id, kind, interval, task_id)
        return self._template(template_id), self._task(task_id)

    def _set_paused(self, template_id: int, actor_id: str | None, paused: bool) -> RecurringTemplate:
        actor = self._require(actor_id, auth.MANAGE_TEMPLATES, template_id)
        with self._repo.atomic():
            template = self._template(template_id)
            if template.is_ended:
                raise InvalidStateError(f"template {template_id} has ended")
            self._repo.update_template(template_id, {"is_paused": paused})
        logger.info("Template %s %s by %s", template_id, "paused" if paused else "resumed", actor)
        return self._template(template_id)

    def pause_template(self, template_id: int, actor_id: str | None) -> RecurringTemplate:
        return self._set_paused(template_id, actor_id, True)

    def resume_template(self, template_id: int, actor_id: str | None) -> RecurringTemplate:
        return self._set_paused(template_id, actor_id, False)

    def end_template(self, template_id: int, actor_id: str | None) -> RecurringTemplate:
        """Irreversibly end the series. Existing instances are left as they are."""
        actor = self._require(actor_id, auth.MANAGE_TEMPLATES, template_id)
        with self._repo.atomic():
            template = self._template(template_id)
            if template.is_ended:
                raise InvalidStateError(f"template {template_id} has already ended")
            self._repo.update_template(template_id, {"is_ended": True})
        logger.info("Template %s ended by %s", template_id, actor)
        return self._template(template_id)

    def advance_template(self, template_id: int, source_task_id: int | None = None) -> Task | None:
        """
        Generate the instance that follows `source_task_id` (default: the current one).

        Returns the new task, or None when nothing was generated: the template is
        paused/ended, the series is exhausted, or the source instance has already
        been advanced from. Exhaustion does not set is_ended.
        """
        now = self._now()
        try:
            with self._repo.atomic():
                template = self._template(template_id)
                if template.is_ended or template.is_paused:
                    logger.info("Template %s not advanced (%s)", template_id, "ended" if template.is_ended else "paused")
                    return None

                source_id = source_task_id if source_task_id is not None else template.last_generated_task_id
                if source_id is None or template.last_generated_task_id != source_id:
                    logger.debug("Template %s already advanced past task %s", template_id, source_id)
                    return None

                source = self._task(source_id)
                base = source.due_date or source.original_due_date
                if base is None:
                    return None

                nxt = next_due_date(template, base, now)
                if nxt is None:
                    logger.info("Template %s series exhausted after task %s", template_id, source_id)
                    return None

                new_id = self._repo.create_task(
                    {
                        "title": template.title,
                        "description": template.description,
                        "assigned_to": template.assigned_to,
                        "created_by": template.created_by,
                        "status": TaskStatus.PENDING,
                        "due_date": nxt,
                        "original_due_date": nxt,
                        "recurring_template_id": template.id,
                    },
                    at=now,
                )
                if not self._repo.try_move_template_pointer(
                    template.id, expected_task_id=source_id, new_task_id=new_id
                ):
                    raise ConcurrencyConflict(f"template {template_id} advanced concurrently")
        except ConcurrencyConflict:
            logger.debug("Template %s advance lost a race; nothing generated", template_id)
            return None

        logger.info("Template %s advanced: task %s -> %s due %s", template_id, source_id, new_id, _iso(nxt))
        return self._task(new_id)

    def template_history(self, template_id: int) -> list[Task]:
        """All instances of a series, latest due date first."""
        self._template(template_id)
        return self._repo.list_template_tasks(template_id)

    # ---- task triggers ----

    def _finish_task(
        self,
        task_id: int,
        actor_id: str | None,
        status: TaskStatus,
        *,
        enforce_unlock: bool,
    ) -> Task:
        task = self._task(task_id)
        permission = auth.COMPLETE_TASKS if status == TaskStatus.COMPLETED else auth.EDIT_TASKS
        actor = self._require(actor_id, permission, task)
        now = self._now()

        with self._repo.atomic():
            task = self._task(task_id)
            if task.status.is_terminal:
                raise InvalidStateError(f"task {task_id} is already {task.status.value}")

            template = (
                self._repo.get_template(task.recurring_template_id)
                if task.recurring_template_id is not None
                else None
            )
            if enforce_unlock and not can_complete(task, template, now):
                raise InvalidStateError(
                    f"task {task_id} cannot be completed before {_iso(can_complete_after(task, template))}"
                )

            fields: dict[str, Any] = {"status": status}
            if status == TaskStatus.COMPLETED:
                fields["completed_at"] = now
            if not self._repo.try_update_task(task_id, expected=_OPEN_STATUSES, fields=fields, at=now):
                raise ConcurrencyConflict(f"task {task_id} changed concurrently")

            self._repo.append(
                task_id,
                ChangeType.STATUS,
                task.status.value,
                status.value,
                {"action": status.value},
                actor,
                at=now,
            )

            if template is not None and template.last_generated_task_id == task_id:
                # Joins this transaction: completion and the next instance land together.
                self.advance_template(template.id, source_task_id=task_id)

        logger.info("Task %s -> %s by %s", task_id, status.value, actor)
        return self._task(task_id)

    def complete_task(self, task_id: int, actor_id: str | None) -> Task:
        """Complete a task; refused until the template's unlock window opens."""
        return self._finish_task(task_id, actor_id, TaskStatus.COMPLETED, enforce_unlock=True)

    def mark_not_applicable(self, task_id: int, actor_id: str | None) -> Task:
        return self._finish_task(task_id, actor_id, TaskStatus.NOT_APPLICABLE, enforce_unlock=False)

    def change_due_date(self, task_id: int, new_due_date: datetime, actor_id: str | None) -> Task:
        """Direct edit; the first due date ever set also becomes original_due_date."""
        if not isinstance(new_due_date, datetime):
            raise ValidationError("new_due_date must be a datetime")
        new_due_date = as_utc(new_due_date)
        task = self._task(task_id)
        actor = self._require(actor_id, auth.EDIT_TASKS, task)
        now = self._now()

        with self._repo.atomic():
            task = self._task(task_id)
            if task.status.is_terminal:
                raise InvalidStateError(f"task {task_id} is {task.status.value}")
            self._repo.update_task(task_id, {"due_date": new_due_date, "original_due_date": new_due_date}, at=now)
            self._repo.append(
                task_id,
                ChangeType.DUE_DATE,
                _iso(task.due_date),
                _iso(new_due_date),
                {"action": "edited"},
                actor,
                at=now,
            )
        return self._task(task_id)

    def reassign_task(self, task_id: int, assignee_id: str, actor_id: str | None) -> Task:
        if not assignee_id:
            raise ValidationError("assignee_id is required")
        task = self._task(task_id)
        actor = self._require(actor_id, auth.EDIT_TASKS, task)
        now = self._now()

        with self._repo.atomic():
            task = self._task(task_id)
            self._repo.update_task(task_id, {"assigned_to": assignee_id}, at=now)
            self._repo.append(task_id, ChangeType.ASSIGNMENT, task.assigned_to, assignee_id, None, actor, at=now)
        return self._task(task_id)

    def task_history(self, task_id: int) -> list[HistoryEntry]:
        self._task(task_id)
        return self._repo.list_history(task_id)
