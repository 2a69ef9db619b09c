# src/delegation_engine/core/errors.py

"""
Error taxonomy for workflow operations.

Calculators (recurrence / overdue) never raise for "no result": absence is a
normal return value. Workflow operations raise these to the caller, which
decides user-facing messaging.
"""

from __future__ import annotations


class DelegationError(Exception):
    """Base class for all engine errors."""


class NotFoundError(DelegationError):
    """Referenced task / template / request does not exist."""

    def __init__(self, kind: str, record_id: object) -> None:
        super().__init__(f"{kind} {record_id} not found")
        self.kind = kind
        self.record_id = record_id


class InvalidStateError(DelegationError):
    """Operation attempted against a record that is not in the required state."""


class ValidationError(DelegationError):
    """Malformed input (negative interval, day-of-month out of range, ...)."""


class ConcurrencyConflict(DelegationError):
    """
    Conditional-update guard failed: another actor resolved the record first.

    Callers should treat this as "already resolved", not as a retryable failure.
    """


class PermissionDeniedError(DelegationError):
    """Actor is missing or not allowed to perform the operation."""
