"""
Delegation engine.

Recurring task generation, overdue tracking against the original due date,
and the reschedule-request approval workflow.
"""

__version__ = "0.1.0"
