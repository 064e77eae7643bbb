"""Core ports, errors, clock and shared application state."""
