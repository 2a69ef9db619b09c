# config.example.py

"""
Documentation-only module (safe to commit).

The real configuration is loaded from environment variables (optionally via a local .env file).
See src/delegation_engine/config.py for parsing and defaults.

This file exists to make the repo self-documenting even without opening .env.
"""

ENV_VARS = {
    # App / logging
    "DELEGATION_APP_NAME": "App display name (default: delegation).",
    "DELEGATION_LOG_LEVEL": "Console logging level (default: INFO).",
    # Connectors
    "DELEGATION_CONSOLE_ENABLED": "Enable the operator console (true/false, default: true).",
    "DELEGATION_CONSOLE_ACTOR_ID": "Actor id used for console commands (default: operator).",
    "DELEGATION_SWEEPER_ENABLED": "Run the expiry sweeper in the background (true/false, default: true).",
    # Paths (gitignored)
    "DELEGATION_DATA_DIR": "Local data directory (default: .local/delegation).",
    "DELEGATION_DB_PATH": "SQLite path (default: <data_dir>/delegation.sqlite3).",
    # Reschedule workflow
    "DELEGATION_RESCHEDULE_EXPIRY_DAYS": "Days until a pending request auto-approves (default: 7, min 1).",
    "DELEGATION_SYSTEM_ACTOR_ID": "Actor recorded for sweep auto-approvals (default: system).",
    "DELEGATION_SWEEP_INTERVAL_SECONDS": "Seconds between sweeper ticks (default: 60, min 0.5).",
    "DELEGATION_SWEEP_BATCH_LIMIT": "Max requests auto-approved per tick (default: 100).",
    # Display
    "DELEGATION_TIMEZONE": "IANA zone deciding the calendar day for overdue counts (default: UTC).",
}
