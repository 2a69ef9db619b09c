# src/delegation_engine/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires the SQLite store and the workflow into AppState.
"""

from __future__ import annotations

import logging

from ..config import get_settings
from ..core.ports import Authorizer, Clock, allow_all, utc_now
from ..core.state import AppState
from ..tasks.task_store import DelegationStore
from ..tasks.workflow import RescheduleWorkflow

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.db_path.parent.mkdir(parents=True, exist_ok=True)


def create_initial_state(
    *,
    settings=None,
    authorize: Authorizer | None = None,
    clock: Clock | None = None,
) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().

    authorize: permission predicate; the host app normally passes a role-table
    authorizer (see core.auth.role_authorizer). Defaults to "any authenticated actor".
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    store = DelegationStore(settings.db_path)
    workflow = RescheduleWorkflow(
        store,
        clock=clock or utc_now,
        authorize=authorize or allow_all,
        default_expiry_days=settings.reschedule_expiry_days,
        system_actor_id=settings.system_actor_id,
    )
    logger.debug(
        "Workflow ready expiry_days=%s system_actor=%s",
        settings.reschedule_expiry_days,
        settings.system_actor_id,
    )
    return AppState(settings=settings, store=store, workflow=workflow)
