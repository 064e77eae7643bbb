# config.example.py

"""
Documentation-only module (safe to commit).

The real configuration is loaded from environment variables (optionally via a local .env file).
Do NOT commit real secrets: keep them in .env (local, gitignored).

See src/taskminder/config.py for parsing and defaults.
"""

ENV_VARS = {
    # App / logging
    "TASKMINDER_APP_NAME": "App display name (default: taskminder).",
    "TASKMINDER_LOG_LEVEL": "Console logging level (default: INFO). The file log is always DEBUG.",
    # Connectors
    "TASKMINDER_CONSOLE_ENABLED": "Enable console REPL (true/false, default: true).",
    "TASKMINDER_MATRIX_ENABLED": "Deliver reminders to Matrix instead of the console (default: false).",
    # Matrix
    "TASKMINDER_MATRIX_HOMESERVER": "Matrix homeserver URL.",
    "TASKMINDER_MATRIX_USER_ID": "Matrix user ID (bot).",
    "TASKMINDER_MATRIX_PASSWORD": "Password for first login (session stored locally).",
    "TASKMINDER_MATRIX_REMINDER_ROOM": "Room ID reminders are posted to (default: first allowed/joined room).",
    "TASKMINDER_MATRIX_ROOMS": "Optional allowlist of room IDs for commands (empty => all rooms).",
    # Paths (gitignored)
    "TASKMINDER_DATA_DIR": "Local data directory, also holds taskminder.log (default: .local/taskminder).",
    "TASKMINDER_MATRIX_STORE_PATH": "Matrix session/E2EE store path (default: <data_dir>/matrix_store).",
    "TASKMINDER_TASKS_DB_PATH": "TaskStore SQLite path (default: <data_dir>/tasks.sqlite3).",
    "TASKMINDER_WORKFLOWS_DB_PATH": "Workflow runs SQLite path (default: <data_dir>/workflows.sqlite3).",
    # Scanner
    "TASKMINDER_SCAN_CRON": "Cron expression for due-task scans (default: */30 * * * *).",
    "TASKMINDER_SUPPRESS_DUPLICATE_ESCALATIONS": (
        "Skip tasks that already have an escalation in flight (default: true)."
    ),
    # Workflow engine
    "TASKMINDER_ENGINE_POLL_SECONDS": "How often runnable workflow runs are polled (default: 5).",
    "TASKMINDER_STEP_MAX_ATTEMPTS": "Attempts per workflow step before it fails (default: 5).",
    "TASKMINDER_STEP_INITIAL_DELAY_SECONDS": "First retry delay (default: 10).",
    "TASKMINDER_STEP_BACKOFF_FACTOR": "Retry delay multiplier (default: 2).",
    "TASKMINDER_STEP_MAX_DELAY_SECONDS": "Retry delay cap (default: 300).",
    # Escalation timing
    "TASKMINDER_BATCH_RETRY_DELAY_SECONDS": "Delay before a batch retries failed launches (default: 300).",
    "TASKMINDER_FOLLOWUP_WAIT_SECONDS": "Wait before the follow-up reminder (default: 86400).",
    "TASKMINDER_ESCALATION_WAIT_SECONDS": "Wait before the urgent reminder (default: 172800).",
}
