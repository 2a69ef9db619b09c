# src/delegation_engine/core/state.py

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any

from ..tasks.task_store import DelegationStore
from ..tasks.workflow import RescheduleWorkflow


@dataclass
class AppState:
    # Settings object (real Settings or a test SimpleNamespace).
    settings: Any

    store: DelegationStore
    workflow: RescheduleWorkflow

    # Serializes console commands against each other; the store handles the rest.
    lock: threading.Lock = field(default_factory=threading.Lock)
