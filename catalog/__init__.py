"""Catalog snapshot package: immutable catalog types, SQLite store, payload adapter."""

__all__ = [
    "adapter",
    "db",
    "snapshot",
]
