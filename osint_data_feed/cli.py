from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from .config import Settings
from .errors import FeedError, RemoteRejectedError
from .logging_config import setup_logging
from .storage.db import SinkSet, UpsertResult, build_sinks
from .storage.persistence import PersistConfig, now_utc_run_id, write_raw_snapshot
from .storage.schema import ETHEREUM_TRANSACTIONS
from .throttle import RateGate
from .transpose.api import QueryClient, query_ethereum_account
from .transpose.pagination import Paginator, query_ethereum_transactions
from .transport import Transport
from .urlscan.session import ScanStatus, scan_domain


@dataclass
class RunConfig:
    command: str
    settings: Settings
    targets: List[str] = field(default_factory=list)
    snapshot: bool = False
    debug: bool = False


def _report_sinks(results: List[UpsertResult]) -> bool:
    """Print one line per backend. Returns True when every backend succeeded."""
    ok = True
    for r in results:
        if r.ok:
            print(f"sink={r.backend} table={r.table} written={r.written} skipped={r.skipped}")
        else:
            ok = False
            print(f"[WARN] sink={r.backend} table={r.table} failed: {r.error}", file=sys.stderr)
    return ok


def run_setup(cfg: RunConfig, sinks: SinkSet) -> int:
    if not len(sinks):
        print("[ERROR] No storage backend configured", file=sys.stderr)
        return 2
    results = sinks.ensure_schema()
    ok = _report_sinks(results)
    for sink in sinks.sinks:
        if hasattr(sink, "table_counts"):
            try:
                for table, count in sink.table_counts():
                    print(f"sink={sink.name} table={table} rows={count}")
            except FeedError as e:
                print(f"[WARN] {e}", file=sys.stderr)
    return 0 if ok else 1


def run_account(cfg: RunConfig, sinks: SinkSet, transport: Optional[Transport] = None) -> int:
    client = QueryClient(cfg.settings, transport)
    rc = 0
    for address in cfg.targets:
        records = query_ethereum_account(client, address)
        print(f"address={address} records={len(records)}")
        if records and not _report_sinks(sinks.upsert("ethereum_accounts", "address", records)):
            rc = 1
    return rc


def run_transactions(cfg: RunConfig, sinks: SinkSet, transport: Optional[Transport] = None) -> int:
    s = cfg.settings
    client = QueryClient(s, transport)
    # One gate for every address: all pages share the API's pacing
    paginator = Paginator(client, RateGate(s.rate_interval), size_cap=s.size_cap, record_weight=s.record_weight)
    pull = query_ethereum_transactions(paginator, cfg.targets, s.page_size)
    print(f"addresses={len(cfg.targets)} transactions={len(pull.records)} truncated={pull.truncated}")
    if pull.truncated:
        print(
            f"[WARN] approximate size cap reached for {', '.join(pull.truncated_addresses)}; "
            "some transactions may be missing",
            file=sys.stderr,
        )

    if cfg.snapshot and pull.records:
        persist_cfg = PersistConfig(s.data_dir, "ethereum_transactions")
        raw_path = write_raw_snapshot(persist_cfg, now_utc_run_id(), pull.records, ETHEREUM_TRANSACTIONS.column_names)
        print(f"raw={raw_path}")

    sinks_ok = True
    if pull.records:
        sinks_ok = _report_sinks(sinks.upsert("ethereum_transactions", "transaction_hash", pull.records))
    return 0 if (sinks_ok and not pull.truncated) else 1


def run_scan(cfg: RunConfig, sinks: SinkSet, transport: Optional[Transport] = None) -> int:
    rc = 0
    for domain in cfg.targets:
        result = scan_domain(cfg.settings, domain, sinks=sinks, transport=transport)
        uuid = result.handle.id if result.handle else None
        print(
            f"domain={domain} uuid={uuid} status={result.status.value} elapsed={result.elapsed:g}s "
            f"screenshot={result.screenshot_path or 'absent'} dom={'yes' if result.dom_text else 'absent'}"
        )
        if result.status == ScanStatus.FAILED:
            print(f"[ERROR] scan failed: {result.error}", file=sys.stderr)
            rc = max(rc, 2)
        elif result.status == ScanStatus.TIMED_OUT:
            print(f"[WARN] {result.error}; try again later", file=sys.stderr)
            rc = max(rc, 1)
        if result.sink_failures:
            _report_sinks(result.sink_failures)
            rc = max(rc, 1)
    return rc


def run_once(cfg: RunConfig, sinks: Optional[SinkSet] = None, transport: Optional[Transport] = None) -> int:
    sinks = sinks if sinks is not None else build_sinks(cfg.settings)
    if cfg.command == "setup":
        return run_setup(cfg, sinks)

    # Tables must exist before the first staged write
    sinks.ensure_schema()
    if cfg.command == "account":
        return run_account(cfg, sinks, transport)
    if cfg.command == "transactions":
        return run_transactions(cfg, sinks, transport)
    if cfg.command == "scan":
        return run_scan(cfg, sinks, transport)
    raise ValueError(f"unknown command: {cfg.command}")


def parse_args(argv: Optional[list[str]] = None, env: Optional[dict] = None) -> RunConfig:
    p = argparse.ArgumentParser(description="Blockchain and domain OSINT data feed")
    p.add_argument(
        "--backend",
        action="append",
        choices=["duckdb", "sqlite", "postgres"],
        help="Storage backend (repeatable); defaults to OSINT_BACKENDS or duckdb",
    )
    p.add_argument("--duckdb", type=Path, help="Path to DuckDB file")
    p.add_argument("--sqlite", type=Path, help="Path to SQLite file")
    p.add_argument("--postgres-dsn", type=str, help="libpq connection string for the postgres backend")
    p.add_argument("--data-dir", type=Path, help="Directory root for artifacts (screenshots, snapshots)")
    p.add_argument("--log-dir", type=str, help="Also write a rotating log file here")
    p.add_argument("--debug", action="store_true", help="Verbose logging")

    sub = p.add_subparsers(dest="command", required=True)
    sub.add_parser("setup", help="Create tables on every configured backend")
    acc = sub.add_parser("account", help="Query Ethereum account details")
    acc.add_argument("addresses", nargs="+")
    tx = sub.add_parser("transactions", help="Pull all transactions for addresses")
    tx.add_argument("addresses", nargs="+")
    tx.add_argument("--page-size", type=int, help="Rows per page (default: 100)")
    tx.add_argument("--snapshot", action="store_true", help="Also write a raw CSV snapshot of the pull")
    sc = sub.add_parser("scan", help="Scan domains with urlscan.io")
    sc.add_argument("domains", nargs="+")
    args = p.parse_args(argv)

    settings = Settings.from_env(env).with_overrides(
        backends=tuple(args.backend) if args.backend else None,
        duckdb_path=args.duckdb,
        sqlite_path=args.sqlite,
        postgres_dsn=args.postgres_dsn,
        data_dir=args.data_dir,
        page_size=getattr(args, "page_size", None),
    )
    setup_logging(logging.DEBUG if args.debug else logging.INFO, args.log_dir)

    return RunConfig(
        command=args.command,
        settings=settings,
        targets=list(getattr(args, "addresses", None) or getattr(args, "domains", None) or []),
        snapshot=bool(getattr(args, "snapshot", False)),
        debug=args.debug,
    )


def main(argv: Optional[list[str]] = None) -> int:
    try:
        cfg = parse_args(argv)
    except ValueError as e:
        # Invalid settings from the environment or flags
        print(f"[ERROR] {e}", file=sys.stderr)
        return 2
    try:
        return run_once(cfg)
    except RemoteRejectedError as e:
        print(f"[ERROR] {e}: {e.body[:200]}", file=sys.stderr)
        return 2
    except FeedError as e:
        # Unauthenticated, transport and malformed-response failures
        print(f"[ERROR] {e}", file=sys.stderr)
        return 2
    except Exception as e:  # surface clear error message
        print(f"[ERROR] {e}", file=sys.stderr)
        if cfg.debug:
            raise
        return 3


if __name__ == "__main__":
    raise SystemExit(main())
