"""Idempotent record sinks for DuckDB, SQLite and PostgreSQL, and the fan-out over them.

Each record is written with ``INSERT ... ON CONFLICT (key) DO UPDATE``. By
default the write replaces the whole row: every table column the record does
not carry is written as NULL. With ``partial=True`` only the carried columns
are written and the others are left as they are, so successive staged writes
over disjoint column subsets of one key build up a single row.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, List, Optional, Protocol, Sequence, Tuple

import duckdb  # type: ignore
import psycopg
from psycopg.conninfo import conninfo_to_dict

from ..config import Settings
from ..errors import ConnectionLostError, SchemaMismatchError, SinkError
from ..records import Record, RecordBatch
from .schema import TABLES, TableSpec


logger = logging.getLogger(__name__)

# Filled in by the database default, never by a write
_SERVER_COLUMNS = ("created_at",)


@dataclass
class UpsertResult:
    backend: str
    table: str
    written: int = 0
    skipped: int = 0
    mismatches: List[SchemaMismatchError] = field(default_factory=list)
    error: Optional[SinkError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class RecordSink(Protocol):
    name: str

    def ensure_schema(self, tables: Optional[Iterable[TableSpec]] = None) -> None: ...

    def upsert(self, table: str, key_field: str, batch: RecordBatch, partial: bool = False) -> UpsertResult: ...


def _quote(ident: str) -> str:
    return '"' + ident.replace('"', '""') + '"'


def build_upsert_sql(table: str, key_field: str, columns: Sequence[str], placeholder: str = "?") -> str:
    cols = ", ".join(_quote(c) for c in columns)
    placeholders = ", ".join(placeholder for _ in columns)
    updates = [f"{_quote(c)} = excluded.{_quote(c)}" for c in columns if c != key_field]
    action = f"DO UPDATE SET {', '.join(updates)}" if updates else "DO NOTHING"
    return f"INSERT INTO {table} ({cols}) VALUES ({placeholders}) ON CONFLICT ({_quote(key_field)}) {action}"


class SqlSink:
    """Shared upsert logic; subclasses supply the driver and its error classes."""

    name = "sql"
    dialect = ""
    placeholder = "?"
    # Errors meaning the backend itself is unusable
    connection_errors: Tuple[type, ...] = ()
    # Errors confined to a single record (bad value for a column, etc.)
    record_errors: Tuple[type, ...] = ()

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)

    @property
    def location(self) -> str:
        return str(self.db_path)

    def _open(self) -> Any:
        raise NotImplementedError

    def _bind(self, value: Any) -> Any:
        return value

    def _connect(self) -> Any:
        try:
            return self._open()
        except (OSError,) + self.connection_errors as e:
            raise ConnectionLostError(self.name, f"cannot open {self.location}: {e}") from e

    def _column_rows(self, con: Any, table: str) -> List[tuple]:
        return con.execute(f"PRAGMA table_info('{table}')").fetchall()

    def _table_columns(self, con: Any, table: str) -> List[str]:
        """Column names of ``table``; empty when the table does not exist."""
        try:
            rows = self._column_rows(con, table)
        except self.connection_errors:
            raise
        except self.record_errors:
            # DuckDB raises CatalogException for a missing table, SQLite returns no rows
            return []
        return [r[1] for r in rows]

    def ensure_schema(self, tables: Optional[Iterable[TableSpec]] = None) -> None:
        con = self._connect()
        try:
            for spec in tables or TABLES.values():
                con.execute(spec.ddl(self.dialect))
        except self.connection_errors as e:
            raise ConnectionLostError(self.name, str(e)) from e
        finally:
            con.close()

    def upsert(self, table: str, key_field: str, batch: RecordBatch, partial: bool = False) -> UpsertResult:
        result = UpsertResult(self.name, table)
        if not batch:
            return result
        con = self._connect()
        try:
            table_columns = self._table_columns(con, table)
            known = set(table_columns)
            writable = [c for c in table_columns if c not in _SERVER_COLUMNS]
            for record in batch:
                err = self._check(table, key_field, record, known)
                if err is None:
                    columns = list(record.keys())
                    if not partial:
                        columns += [c for c in writable if c not in record]
                    try:
                        con.execute(
                            build_upsert_sql(table, key_field, columns, self.placeholder),
                            [self._bind(record.get(c)) for c in columns],
                        )
                    except self.connection_errors as e:
                        raise ConnectionLostError(self.name, str(e)) from e
                    except self.record_errors as e:
                        err = SchemaMismatchError(self.name, table, columns, f"{table}: {e}")
                if err is None:
                    result.written += 1
                else:
                    logger.warning("%s: skipping record %s=%r: %s", self.name, key_field, record.get(key_field), err)
                    result.skipped += 1
                    result.mismatches.append(err)
        except self.connection_errors as e:
            raise ConnectionLostError(self.name, str(e)) from e
        finally:
            con.close()
        logger.debug("%s: %s written=%d skipped=%d", self.name, table, result.written, result.skipped)
        return result

    def _check(self, table: str, key_field: str, record: Record, known: set) -> Optional[SchemaMismatchError]:
        if record.get(key_field) is None:
            return SchemaMismatchError(self.name, table, [key_field], f"{table}: record has no {key_field}")
        unknown = [k for k in record if k not in known]
        if unknown:
            return SchemaMismatchError(self.name, table, unknown)
        return None

    def read_record(self, table: str, key_field: str, key: Any) -> Optional[dict]:
        con = self._connect()
        try:
            cur = con.execute(f"SELECT * FROM {table} WHERE {_quote(key_field)} = {self.placeholder}", [key])
            row = cur.fetchone()
            if row is None:
                return None
            names = [d[0] for d in cur.description]
            return dict(zip(names, row))
        finally:
            con.close()

    def table_counts(self) -> List[Tuple[str, int]]:
        con = self._connect()
        try:
            out = []
            for name in TABLES:
                if self._table_columns(con, name):
                    out.append((name, int(con.execute(f"SELECT COUNT(*) FROM {name}").fetchone()[0])))
            return out
        finally:
            con.close()


class DuckDBSink(SqlSink):
    name = "duckdb"
    dialect = "duckdb"
    connection_errors = (duckdb.IOException, duckdb.ConnectionException)
    record_errors = (duckdb.Error, TypeError, ValueError, OverflowError)

    def _open(self) -> Any:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        return duckdb.connect(str(self.db_path))


_SQLITE_INT_MIN, _SQLITE_INT_MAX = -(2**63), 2**63 - 1


class SQLiteSink(SqlSink):
    name = "sqlite"
    dialect = "sqlite"
    connection_errors = (sqlite3.OperationalError,)
    record_errors = (sqlite3.Error, OverflowError)

    def _open(self) -> Any:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        # Autocommit: each upsert stands alone, like DuckDB's default
        con = sqlite3.connect(str(self.db_path), isolation_level=None)
        try:
            con.execute("PRAGMA journal_mode=WAL")
        except sqlite3.Error:
            con.close()
            raise
        return con

    def _bind(self, value: Any) -> Any:
        # Wei amounts overflow INTEGER; NUMERIC affinity converts the text back
        if isinstance(value, int) and not isinstance(value, bool) and not (_SQLITE_INT_MIN <= value <= _SQLITE_INT_MAX):
            return str(value)
        return value


class PostgresSink(SqlSink):
    name = "postgres"
    dialect = "postgres"
    placeholder = "%s"
    connection_errors = (psycopg.OperationalError, psycopg.InterfaceError)
    record_errors = (psycopg.DataError, psycopg.ProgrammingError, psycopg.IntegrityError, psycopg.InternalError)

    def __init__(self, dsn: str) -> None:
        self.dsn = dsn

    @property
    def location(self) -> str:
        # Never echo the password
        try:
            params = conninfo_to_dict(self.dsn)
        except psycopg.ProgrammingError:
            return "postgres database"
        return f"postgres database {params.get('dbname', '')}@{params.get('host', 'localhost')}"

    def _open(self) -> Any:
        return psycopg.connect(self.dsn, autocommit=True)

    def _column_rows(self, con: Any, table: str) -> List[tuple]:
        rows = con.execute(
            "SELECT ordinal_position, column_name FROM information_schema.columns "
            "WHERE table_schema = current_schema() AND table_name = %s ORDER BY ordinal_position",
            [table],
        ).fetchall()
        return [(pos, name) for pos, name in rows]


class SinkSet:
    """Fans one logical write out to every configured backend.

    A failing backend is reported in its UpsertResult and never stops the
    others; nothing here raises SinkError.
    """

    def __init__(self, sinks: Iterable[RecordSink] = ()) -> None:
        self.sinks: List[RecordSink] = list(sinks)

    def __len__(self) -> int:
        return len(self.sinks)

    def ensure_schema(self) -> List[UpsertResult]:
        results = []
        for sink in self.sinks:
            res = UpsertResult(sink.name, "*")
            try:
                sink.ensure_schema()
            except SinkError as e:
                logger.error("schema setup failed: %s", e)
                res.error = e
            results.append(res)
        return results

    def upsert(self, table: str, key_field: str, batch: RecordBatch, partial: bool = False) -> List[UpsertResult]:
        results = []
        for sink in self.sinks:
            try:
                results.append(sink.upsert(table, key_field, batch, partial=partial))
            except SinkError as e:
                logger.error("upsert into %s failed: %s", table, e)
                results.append(UpsertResult(sink.name, table, skipped=len(batch), error=e))
        return results


def build_sinks(settings: Settings) -> SinkSet:
    sinks: List[RecordSink] = []
    for backend in settings.backends:
        if backend == "duckdb":
            sinks.append(DuckDBSink(settings.duckdb_path))
        elif backend == "sqlite":
            sinks.append(SQLiteSink(settings.sqlite_path))
        elif backend == "postgres":
            sinks.append(PostgresSink(settings.postgres_dsn))
    return SinkSet(sinks)
