"""Command line entrypoint, slash commands and the composition root."""
