# tests/test_task_store.py

from __future__ import annotations

import sqlite3
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from delegation_engine.core.errors import ValidationError
from delegation_engine.tasks.task_models import ChangeType, RescheduleStatus, TaskStatus
from delegation_engine.tasks.task_store import DelegationStore

T0 = datetime(2024, 11, 11, 9, 0, tzinfo=UTC)


def _request_fields(task_id: int, *, expires_at: datetime, **extra) -> dict:
    fields = {
        "task_id": task_id,
        "requested_by": "alice",
        "requested_due_date": T0 + timedelta(days=3),
        "current_due_date": T0,
        "expires_at": expires_at,
    }
    fields.update(extra)
    return fields


def test_create_and_get_task_roundtrip(store: DelegationStore) -> None:
    task_id = store.create_task({"title": "Buy milk", "due_date": T0, "assigned_to": "bob"})
    task = store.get_task(task_id)
    assert task is not None
    assert task.title == "Buy milk"
    assert task.status == TaskStatus.PENDING
    assert task.due_date == T0
    assert task.original_due_date == T0
    assert task.assigned_to == "bob"
    assert task.created_at is not None
    assert store.count_tasks() == 1


def test_create_task_requires_title(store: DelegationStore) -> None:
    with pytest.raises(ValidationError):
        store.create_task({"title": "   "})


def test_unknown_fields_are_rejected(store: DelegationStore) -> None:
    with pytest.raises(ValidationError):
        store.create_task({"title": "x", "colour": "red"})
    task_id = store.create_task({"title": "x"})
    with pytest.raises(ValidationError):
        store.update_task(task_id, {"id": 99})


def test_get_missing_records_returns_none(store: DelegationStore) -> None:
    assert store.get_task(404) is None
    assert store.get_template(404) is None
    assert store.get_request(404) is None


def test_original_due_date_is_write_once(store: DelegationStore) -> None:
    task_id = store.create_task({"title": "x", "due_date": T0})
    later = T0 + timedelta(days=5)
    store.update_task(task_id, {"due_date": later, "original_due_date": later})
    task = store.get_task(task_id)
    assert task is not None
    assert task.due_date == later
    assert task.original_due_date == T0


def test_original_due_date_fills_when_missing(store: DelegationStore) -> None:
    task_id = store.create_task({"title": "undated"})
    store.update_task(task_id, {"due_date": T0, "original_due_date": T0})
    task = store.get_task(task_id)
    assert task is not None
    assert task.original_due_date == T0


def test_try_update_task_respects_expected_status(store: DelegationStore) -> None:
    task_id = store.create_task({"title": "x", "due_date": T0})
    assert store.try_update_task(
        task_id,
        expected=[TaskStatus.PENDING],
        fields={"status": TaskStatus.COMPLETED, "completed_at": T0},
    )
    assert not store.try_update_task(
        task_id,
        expected=[TaskStatus.PENDING, TaskStatus.RESCHEDULING],
        fields={"status": TaskStatus.NOT_APPLICABLE},
    )
    task = store.get_task(task_id)
    assert task is not None
    assert task.status == TaskStatus.COMPLETED
    assert task.completed_at == T0


def test_is_ended_never_goes_back(store: DelegationStore) -> None:
    template_id = store.create_template({"title": "t", "kind": "daily", "interval": 1, "start_date": T0})
    store.update_template(template_id, {"is_ended": True})
    store.update_template(template_id, {"is_ended": False, "is_paused": True})
    template = store.get_template(template_id)
    assert template is not None
    assert template.is_ended is True
    assert template.is_paused is True


def test_template_roundtrip_keeps_end_date_as_date(store: DelegationStore) -> None:
    template_id = store.create_template(
        {
            "title": "rent",
            "kind": "monthly",
            "interval": 1,
            "start_date": T0,
            "day_of_month": 31,
            "end_date": datetime(2025, 6, 30).date(),
            "unlock_days_before_due": 2,
        }
    )
    template = store.get_template(template_id)
    assert template is not None
    assert template.kind == "monthly"
    assert template.day_of_month == 31
    assert template.end_date == datetime(2025, 6, 30).date()
    assert template.unlock_days_before_due == 2
    assert template.is_paused is False
    assert template.last_generated_task_id is None


def test_template_pointer_compare_and_set(store: DelegationStore) -> None:
    template_id = store.create_template({"title": "t", "kind": "daily", "interval": 1, "start_date": T0})
    first = store.create_task({"title": "t", "due_date": T0, "recurring_template_id": template_id})
    second = store.create_task({"title": "t", "due_date": T0, "recurring_template_id": template_id})

    assert store.try_move_template_pointer(template_id, expected_task_id=None, new_task_id=first)
    assert not store.try_move_template_pointer(template_id, expected_task_id=None, new_task_id=second)
    assert store.try_move_template_pointer(template_id, expected_task_id=first, new_task_id=second)

    template = store.get_template(template_id)
    assert template is not None
    assert template.last_generated_task_id == second
    assert [t.id for t in store.list_template_tasks(template_id)] == [second, first]


def test_request_transition_happens_once(store: DelegationStore) -> None:
    task_id = store.create_task({"title": "x", "due_date": T0})
    request_id = store.create_request(_request_fields(task_id, expires_at=T0 + timedelta(days=7)))

    approved = {"status": RescheduleStatus.APPROVED, "approved_by": "owner", "approved_at": T0}
    assert store.try_transition_request(request_id, expected=RescheduleStatus.PENDING, fields=approved)
    rejected = {"status": RescheduleStatus.REJECTED, "rejected_by": "owner", "rejected_at": T0}
    assert not store.try_transition_request(request_id, expected=RescheduleStatus.PENDING, fields=rejected)

    req = store.get_request(request_id)
    assert req is not None
    assert req.status == RescheduleStatus.APPROVED
    assert req.approved_by == "owner"
    assert req.rejected_by is None


def test_create_request_needs_datetime_expiry(store: DelegationStore) -> None:
    task_id = store.create_task({"title": "x", "due_date": T0})
    with pytest.raises(ValidationError):
        store.create_request(_request_fields(task_id, expires_at="2024-11-18"))


def test_list_expired_pending_orders_and_limits(store: DelegationStore) -> None:
    task_id = store.create_task({"title": "x", "due_date": T0})
    late = store.create_request(_request_fields(task_id, expires_at=T0 - timedelta(hours=1)))
    early = store.create_request(_request_fields(task_id, expires_at=T0 - timedelta(days=2)))
    store.create_request(_request_fields(task_id, expires_at=T0 + timedelta(days=1)))
    resolved = store.create_request(_request_fields(task_id, expires_at=T0 - timedelta(days=3)))
    store.try_transition_request(
        resolved,
        expected=RescheduleStatus.PENDING,
        fields={"status": RescheduleStatus.REJECTED, "rejected_by": "owner", "rejected_at": T0},
    )

    assert [r.id for r in store.list_expired_pending(now=T0)] == [early, late]
    assert [r.id for r in store.list_expired_pending(now=T0, limit=1)] == [early]


def test_expiry_boundary_is_inclusive(store: DelegationStore) -> None:
    task_id = store.create_task({"title": "x", "due_date": T0})
    request_id = store.create_request(_request_fields(task_id, expires_at=T0))
    assert [r.id for r in store.list_expired_pending(now=T0)] == [request_id]
    assert store.list_expired_pending(now=T0 - timedelta(seconds=1)) == []


def test_list_requests_filters(store: DelegationStore) -> None:
    a = store.create_task({"title": "a", "due_date": T0})
    b = store.create_task({"title": "b", "due_date": T0})
    r1 = store.create_request(_request_fields(a, expires_at=T0))
    r2 = store.create_request(_request_fields(b, expires_at=T0, requested_by="carol"))

    assert {r.id for r in store.list_requests()} == {r1, r2}
    assert [r.id for r in store.list_requests(task_id=a)] == [r1]
    assert [r.id for r in store.list_requests(requested_by="carol")] == [r2]
    assert store.list_requests(status=RescheduleStatus.APPROVED) == []


def test_history_keeps_metadata_and_actor(store: DelegationStore) -> None:
    task_id = store.create_task({"title": "x", "due_date": T0})
    store.append(task_id, ChangeType.STATUS, "pending", "completed", None, "alice")
    store.append(
        task_id,
        ChangeType.RESCHEDULE_REQUEST,
        T0.isoformat(),
        (T0 + timedelta(days=1)).isoformat(),
        {"action": "approved", "request_id": 3},
        "owner",
    )

    entries = store.list_history(task_id)
    assert [e.change_type for e in entries] == [ChangeType.RESCHEDULE_REQUEST, ChangeType.STATUS]
    assert entries[0].metadata == {"action": "approved", "request_id": 3}
    assert entries[0].changed_by == "owner"
    assert entries[1].metadata == {}


def test_history_requires_actor(store: DelegationStore) -> None:
    task_id = store.create_task({"title": "x"})
    with pytest.raises(ValidationError):
        store.append(task_id, ChangeType.STATUS, None, None, None, "")


def test_atomic_rolls_back_on_error(store: DelegationStore) -> None:
    with pytest.raises(RuntimeError):
        with store.atomic():
            store.create_task({"title": "ghost"})
            raise RuntimeError("boom")
    assert store.count_tasks() == 0


def test_nested_atomic_failure_only_undoes_inner_block(store: DelegationStore) -> None:
    with store.atomic():
        kept = store.create_task({"title": "kept"})
        with pytest.raises(RuntimeError):
            with store.atomic():
                store.create_task({"title": "dropped"})
                raise RuntimeError("inner")
    assert store.count_tasks() == 1
    assert store.get_task(kept) is not None


def test_schema_migration_adds_missing_columns(tmp_path: Path) -> None:
    db = tmp_path / "old.sqlite3"
    conn = sqlite3.connect(db)
    conn.execute(
        """
        CREATE TABLE tasks (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            title TEXT NOT NULL,
            description TEXT,
            assigned_to TEXT,
            created_by TEXT,
            status TEXT NOT NULL DEFAULT 'pending',
            due_date TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )
    conn.commit()
    conn.close()

    store = DelegationStore(db)
    task_id = store.create_task({"title": "x", "due_date": T0})
    task = store.get_task(task_id)
    assert task is not None
    assert task.original_due_date == T0
    assert task.recurring_template_id is None
