"""Persistence: relational sinks (DuckDB, SQLite) and file artifacts."""

__all__ = [
    "db",
    "persistence",
    "schema",
]
