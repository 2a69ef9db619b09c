"""
Task subsystem.

Components:
- task_models.py: data structures (Task, RecurringTemplate, RescheduleRequest, HistoryEntry)
- recurrence.py: next-occurrence calculator for recurring templates
- overdue.py: overdue days against the original due date (with the reschedule cap)
- task_store.py: SQLite-backed storage + conditional-update helpers
- workflow.py: reschedule approval workflow and template lifecycle
- sweeper.py: polling loop that auto-approves expired reschedule requests
- task_api.py: small high-level helpers used by the rest of the app
"""
