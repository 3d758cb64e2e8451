"""Flush-only kernel services.  Callers own commit boundaries."""
