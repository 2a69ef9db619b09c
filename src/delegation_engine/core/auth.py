# src/delegation_engine/core/auth.py

"""
Permission names and a role-table authorizer.

The workflow only ever calls an injected predicate `(actor_id, permission, record) -> bool`.
`role_authorizer` builds one from a role lookup and a capability table; hosts with a
different permission model can pass any callable instead.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any

from .ports import Authorizer

REQUEST_RESCHEDULE = "reschedule.request"
APPROVE_RESCHEDULE = "reschedule.approve"
REJECT_RESCHEDULE = "reschedule.reject"
MANAGE_TEMPLATES = "templates.manage"
COMPLETE_TASKS = "tasks.complete"
EDIT_TASKS = "tasks.edit"

DEFAULT_ROLE_PERMISSIONS: dict[str, frozenset[str]] = {
    "admin": frozenset(
        {
            REQUEST_RESCHEDULE,
            APPROVE_RESCHEDULE,
            REJECT_RESCHEDULE,
            MANAGE_TEMPLATES,
            COMPLETE_TASKS,
            EDIT_TASKS,
        }
    ),
    "owner": frozenset(
        {
            REQUEST_RESCHEDULE,
            APPROVE_RESCHEDULE,
            REJECT_RESCHEDULE,
            MANAGE_TEMPLATES,
            COMPLETE_TASKS,
            EDIT_TASKS,
        }
    ),
    # Doers work their assigned tasks and ask for more time; they do not approve.
    "doer": frozenset({REQUEST_RESCHEDULE, COMPLETE_TASKS, EDIT_TASKS}),
    "viewer": frozenset(),
}


def has_permission(
    role: str | None,
    permission: str,
    table: Mapping[str, frozenset[str]] = DEFAULT_ROLE_PERMISSIONS,
) -> bool:
    if not role:
        return False
    return permission in table.get(role, frozenset())


def role_authorizer(
    role_of: Callable[[str], str | None],
    table: Mapping[str, frozenset[str]] = DEFAULT_ROLE_PERMISSIONS,
    *,
    system_actor_id: str | None = None,
) -> Authorizer:
    """
    Build an Authorizer from `role_of(actor_id) -> role`.

    The system actor (expiry sweep) is always allowed.
    """

    def authorize(actor_id: str | None, permission: str, record: Any) -> bool:
        if not actor_id:
            return False
        if system_actor_id is not None and actor_id == system_actor_id:
            return True
        return has_permission(role_of(actor_id), permission, table)

    return authorize
