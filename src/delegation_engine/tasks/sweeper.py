# src/delegation_engine/tasks/sweeper.py

"""
Reschedule expiry sweeper.

A small polling loop that periodically auto-approves pending reschedule requests
whose expiry window has passed. Each tick is independent; overlapping sweepers
(other processes, a manual /sweep) are safe because every row is resolved under
its own conditional update.
"""

from __future__ import annotations

import asyncio
import logging

from .workflow import RescheduleWorkflow, SweepReport

logger = logging.getLogger(__name__)


def run_sweep_once(workflow: RescheduleWorkflow, *, batch_limit: int | None = None) -> SweepReport | None:
    """One sweep tick. Never raises; returns None if the sweep itself failed."""
    try:
        report = workflow.sweep_expired(limit=batch_limit)
    except Exception:
        logger.exception("sweep_expired failed")
        return None

    if report.total:
        logger.info(
            "Sweep: approved=%d skipped=%d failed=%d",
            len(report.approved),
            len(report.skipped),
            len(report.failed),
        )
    return report


async def run_reschedule_sweeper(
        workflow: RescheduleWorkflow,
        *,
        interval_seconds: float = 60.0,
        batch_limit: int = 100,
) -> None:
    """
    Simple polling sweeper.

    Every interval_seconds:
    - list pending requests with expires_at <= now (at most batch_limit)
    - auto-approve each one as the system actor
    - log the outcome; failures are logged per row and retried next tick

    To stop the sweeper, cancel the coroutine/task.
    """
    sleep_s = max(0.5, float(interval_seconds))
    limit = max(1, int(batch_limit))

    while True:
        run_sweep_once(workflow, batch_limit=limit)
        await asyncio.sleep(sleep_s)
