from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Tuple


# (column, duckdb type, sqlite type)
Column = Tuple[str, str, str]


# Postgres types follow the DuckDB column type; NUMERIC holds wei-sized values
_POSTGRES_TYPES = {"VARCHAR": "TEXT", "DOUBLE": "NUMERIC", "BIGINT": "BIGINT", "INTEGER": "INTEGER"}


def column_type(col: Column, dialect: str) -> str:
    if dialect == "duckdb":
        return col[1]
    if dialect == "sqlite":
        return col[2]
    if dialect == "postgres":
        return _POSTGRES_TYPES[col[1]]
    raise ValueError(f"unknown SQL dialect: {dialect}")


@dataclass(frozen=True)
class TableSpec:
    name: str
    key: str
    columns: Tuple[Column, ...]
    created_at: bool = False

    @property
    def column_names(self) -> List[str]:
        names = [c[0] for c in self.columns]
        if self.created_at:
            names.append("created_at")
        return names

    def ddl(self, dialect: str) -> str:
        lines = []
        for col in self.columns:
            line = f'  "{col[0]}" {column_type(col, dialect)}'
            if col[0] == self.key:
                line += " PRIMARY KEY"
            lines.append(line)
        if self.created_at:
            lines.append("  created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP")
        body = ",\n".join(lines)
        return f"CREATE TABLE IF NOT EXISTS {self.name} (\n{body}\n);"


def _cols(*spec: str) -> Tuple[Column, ...]:
    out = []
    for s in spec:
        name, duck, lite = s.split(":")
        out.append((name, duck, lite))
    return tuple(out)


ETHEREUM_ACCOUNTS = TableSpec(
    "ethereum_accounts",
    "address",
    _cols(
        "address:VARCHAR:TEXT",
        "created_timestamp:VARCHAR:TEXT",
        "creator_address:VARCHAR:TEXT",
        "last_active_timestamp:VARCHAR:TEXT",
        "type:VARCHAR:TEXT",
    ),
)

ETHEREUM_TRANSACTIONS = TableSpec(
    "ethereum_transactions",
    "transaction_hash",
    _cols(
        "transaction_hash:VARCHAR:TEXT",
        "base_fee_per_gas:DOUBLE:NUMERIC",
        "block_number:BIGINT:INTEGER",
        "contract_address:VARCHAR:TEXT",
        "fees_burned:DOUBLE:NUMERIC",
        "fees_rewarded:DOUBLE:NUMERIC",
        "fees_saved:DOUBLE:NUMERIC",
        "from_address:VARCHAR:TEXT",
        "gas_limit:DOUBLE:NUMERIC",
        "gas_price:DOUBLE:NUMERIC",
        "gas_used:DOUBLE:NUMERIC",
        "input:VARCHAR:TEXT",
        "internal_failed_transaction_count:INTEGER:INTEGER",
        "internal_transaction_count:INTEGER:INTEGER",
        "log_count:INTEGER:INTEGER",
        "max_fee_per_gas:DOUBLE:NUMERIC",
        "max_priority_fee_per_gas:DOUBLE:NUMERIC",
        "nonce:BIGINT:INTEGER",
        "output:VARCHAR:TEXT",
        "position:INTEGER:INTEGER",
        # Remote timestamps are ISO strings; kept verbatim
        "timestamp:VARCHAR:TEXT",
        "to_address:VARCHAR:TEXT",
        "transaction_fee:DOUBLE:NUMERIC",
        "type:INTEGER:INTEGER",
        "value:DOUBLE:NUMERIC",
    ),
)

URLSCAN_DOMAIN_DATA = TableSpec(
    "urlscan_domain_data",
    "uuid",
    _cols(
        "uuid:VARCHAR:TEXT",
        "domain:VARCHAR:TEXT",
        "result_url:VARCHAR:TEXT",
        "api_url:VARCHAR:TEXT",
        "visibility:VARCHAR:TEXT",
        "useragent:VARCHAR:TEXT",
        "country:VARCHAR:TEXT",
        "screenshot_path:VARCHAR:TEXT",
        "asn:VARCHAR:TEXT",
        "ip:VARCHAR:TEXT",
        "title:VARCHAR:TEXT",
        "verdict_score:INTEGER:INTEGER",
        "verdict_brands:VARCHAR:TEXT",
    ),
    created_at=True,
)

URLSCAN_DOM_SNAPSHOT = TableSpec(
    "urlscan_dom_snapshot",
    "uuid",
    _cols("uuid:VARCHAR:TEXT", "dom:VARCHAR:TEXT"),
    created_at=True,
)

URLSCAN_SCAN_DATA = TableSpec(
    "urlscan_scan_data",
    "uuid",
    _cols(
        "uuid:VARCHAR:TEXT",
        "ip:VARCHAR:TEXT",
        "data_links:VARCHAR:TEXT",
        "page_asn:VARCHAR:TEXT",
        "page_ip:VARCHAR:TEXT",
        "page_country:VARCHAR:TEXT",
        "page_title:VARCHAR:TEXT",
    ),
    created_at=True,
)

TABLES: Dict[str, TableSpec] = {
    t.name: t
    for t in (
        ETHEREUM_ACCOUNTS,
        ETHEREUM_TRANSACTIONS,
        URLSCAN_DOMAIN_DATA,
        URLSCAN_DOM_SNAPSHOT,
        URLSCAN_SCAN_DATA,
    )
}
