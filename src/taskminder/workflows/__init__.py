"""Durable workflow engine: runs, steps, sleeps and triggers persisted in SQLite."""
