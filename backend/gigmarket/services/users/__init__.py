"""User accounts and project counters."""
