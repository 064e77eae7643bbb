"""Reminder workflows: scanner, batch coordinator, escalation process and delivery."""
