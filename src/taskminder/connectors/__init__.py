"""Transports that deliver reminders and accept slash commands (console, Matrix)."""
