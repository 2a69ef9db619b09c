# tests/conftest.py

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path
from types import SimpleNamespace

import pytest

from delegation_engine.cli.bootstrap import create_initial_state
from delegation_engine.core.state import AppState
from delegation_engine.tasks.task_store import DelegationStore
from delegation_engine.tasks.workflow import RescheduleWorkflow

from .fakes import FakeClock


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and bootstrap.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="delegation-test",
        log_level="DEBUG",
        data_dir=tmp_path,
        db_path=tmp_path / "delegation.sqlite3",
        reschedule_expiry_days=7,
        system_actor_id="system",
        sweep_interval_seconds=0.01,
        sweep_batch_limit=10,
        timezone="UTC",
        console_enabled=False,
        console_actor_id="operator",
        sweeper_enabled=False,
    )


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 11, 11, 9, 0, tzinfo=UTC))


@pytest.fixture()
def store(settings: SimpleNamespace) -> DelegationStore:
    """Real SQLite store: its conditional updates are part of what we test."""
    return DelegationStore(settings.db_path)


@pytest.fixture()
def workflow(store: DelegationStore, clock: FakeClock) -> RescheduleWorkflow:
    return RescheduleWorkflow(store, clock=clock, default_expiry_days=7, system_actor_id="system")


@pytest.fixture()
def state(settings: SimpleNamespace, clock: FakeClock) -> AppState:
    return create_initial_state(settings=settings, clock=clock)
