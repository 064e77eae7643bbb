"""Recurring tasks: frequency model, due evaluation and the SQLite task store."""
