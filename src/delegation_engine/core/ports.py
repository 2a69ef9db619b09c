# src/delegation_engine/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the workflow.

The workflow depends on Protocols instead of the SQLite store.
This keeps persistence swappable and makes testing easier.
"""

from collections.abc import Callable, Iterable
from contextlib import AbstractContextManager
from datetime import UTC, datetime
from typing import Any, Protocol

Clock = Callable[[], datetime]
# Injected "now"; pure calculators never read the system clock themselves.

Authorizer = Callable[[str | None, str, Any], bool]
# (actor_id, permission, record) -> allowed?


def utc_now() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def allow_all(actor_id: str | None, permission: str, record: Any) -> bool:
    return bool(actor_id)


class TransactionScope(Protocol):
    """
    Unit of work.

    Everything executed inside `with store.atomic():` commits together or not at all.
    Nested atomic() blocks run as savepoints inside the outer transaction.
    """

    def atomic(self) -> AbstractContextManager[None]: ...


class TaskStore(Protocol):
    def get_task(self, task_id: int) -> Any | None: ...
    def create_task(self, fields: dict[str, Any], *, at: datetime | None = None) -> int: ...
    def update_task(self, task_id: int, fields: dict[str, Any], *, at: datetime | None = None) -> None: ...
    def try_update_task(
            self,
            task_id: int,
            *,
            expected: Iterable[Any],
            fields: dict[str, Any],
            at: datetime | None = None,
    ) -> bool: ...
    def list_template_tasks(self, template_id: int) -> list[Any]: ...


class TemplateStore(Protocol):
    def get_template(self, template_id: int) -> Any | None: ...
    def create_template(self, fields: dict[str, Any], *, at: datetime | None = None) -> int: ...
    def update_template(self, template_id: int, fields: dict[str, Any]) -> None: ...
    def try_move_template_pointer(
            self,
            template_id: int,
            *,
            expected_task_id: int | None,
            new_task_id: int,
    ) -> bool: ...


class RescheduleRequestStore(Protocol):
    def get_request(self, request_id: int) -> Any | None: ...
    def create_request(self, fields: dict[str, Any]) -> int: ...
    def try_transition_request(
            self,
            request_id: int,
            *,
            expected: Any,
            fields: dict[str, Any],
    ) -> bool: ...
    def list_requests(
            self,
            *,
            task_id: int | None = None,
            status: Any | None = None,
            requested_by: str | None = None,
    ) -> list[Any]: ...
    def list_expired_pending(self, *, now: datetime, limit: int | None = None) -> list[Any]: ...


class HistoryLog(Protocol):
    def append(
            self,
            task_id: int,
            change_type: Any,
            old_value: str | None,
            new_value: str | None,
            metadata: dict[str, Any] | None,
            actor_id: str,
            *,
            at: datetime | None = None,
    ) -> int: ...

    def list_history(self, task_id: int) -> list[Any]: ...


class DelegationRepo(TransactionScope, TaskStore, TemplateStore, RescheduleRequestStore, HistoryLog, Protocol):
    """Everything the workflow needs from persistence, in one object."""
