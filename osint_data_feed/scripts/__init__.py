"""CLI scripts for working with collected data.

Scripts:
- export_table_to_csv: Export a DuckDB table to CSV

Usage:
    python -m osint_data_feed.scripts.export_table_to_csv --help
"""

__all__ = [
    "export_table_to_csv",
]
