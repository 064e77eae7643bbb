"""Periodic task reminders with durable multi-level escalation."""

__version__ = "0.1.0"
