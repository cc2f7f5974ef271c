#!/usr/bin/env python3
from __future__ import annotations

"""
Export every row of one collected table from a DuckDB file to CSV.

Usage examples:
  python -m osint_data_feed.scripts.export_table_to_csv \
    --duckdb data/osint.duckdb --table ethereum_transactions \
    --out exports/ethereum_transactions.csv --overwrite

Notes:
  - Columns follow the table definition in osint_data_feed.storage.schema
  - By default prevents overwriting unless --overwrite is passed
"""

import argparse
import sys
from pathlib import Path
from typing import Optional

import duckdb  # type: ignore
import pandas as pd

from osint_data_feed.storage.schema import TABLES


def load_table(db_path: Path, table: str) -> pd.DataFrame:
    spec = TABLES[table]
    con = duckdb.connect(str(db_path), read_only=True)
    try:
        cols = ", ".join(f'"{c}"' for c in spec.column_names)
        return con.execute(f'SELECT {cols} FROM {spec.name} ORDER BY "{spec.key}"').fetch_df()
    finally:
        con.close()


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Export a collected table from DuckDB to CSV")
    parser.add_argument("--duckdb", type=Path, required=True, help="Path to DuckDB file")
    parser.add_argument("--table", required=True, choices=sorted(TABLES), help="Table to export")
    parser.add_argument("--out", type=Path, help="Output CSV path (default: <table>.csv)")
    parser.add_argument("--overwrite", action="store_true", help="Allow overwriting existing output file")
    args = parser.parse_args(argv)

    out_path = args.out or Path(f"{args.table}.csv")
    out_path.parent.mkdir(parents=True, exist_ok=True)
    if out_path.exists() and not args.overwrite:
        print(f"ERROR: Output exists: {out_path}. Pass --overwrite to replace.")
        return 2

    df = load_table(args.duckdb, args.table)
    if df.empty:
        print("WARN: No rows fetched from DuckDB; writing empty CSV with header.")

    df.to_csv(out_path, index=False)
    if not df.empty:
        print(f"Wrote {len(df):,} rows to {out_path}")
    else:
        print(f"Wrote empty CSV to {out_path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
