"""Shared utility helpers used across connectors and services."""


def safe_int(v):
    """Safely convert a value to int, returning None on failure."""
    if v is None or isinstance(v, bool):
        return None
    try:
        return int(v)
    except (ValueError, TypeError):
        return None
