"""Recurring job entrypoints."""

__all__ = [
    "loyalty",
]
