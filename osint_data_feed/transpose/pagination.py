"""Offset pagination over the Transpose SQL endpoint.

Pagination ends on the first *empty* page. A short page is not treated as the
last one, so an irregular remote page size costs at most one extra request
instead of silently dropping rows.

The total-size safeguard is approximate: ``records_seen * record_weight``
bytes, checked against ``size_cap`` after every page. Breaching it stops the
run and flags it as truncated; it is not an error.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Iterator, List, Mapping, Optional, Tuple

from ..records import RecordBatch
from ..throttle import RateGate
from .api import QueryClient, QueryRequest, load_sql_query


logger = logging.getLogger(__name__)

DEFAULT_SIZE_CAP = 1_000_000
DEFAULT_RECORD_WEIGHT = 1000


@dataclass
class PaginationCursor:
    offset: int = 0
    limit: int = 100
    accumulated_size_estimate: int = 0
    records_seen: int = 0

    def advance(self, page_len: int, record_weight: int) -> None:
        self.records_seen += page_len
        self.accumulated_size_estimate = self.records_seen * record_weight
        self.offset += self.limit


class PageRun:
    """Lazy sequence of pages for one query identity.

    Every ``iter()`` starts over from offset 0 with a new cursor; ``cursor``,
    ``truncated`` and ``cancelled`` describe the most recent iteration.
    """

    def __init__(
        self,
        paginator: "Paginator",
        request: QueryRequest,
        page_size: int,
    ) -> None:
        self._paginator = paginator
        self.request = request
        self.page_size = page_size
        self.cursor = PaginationCursor(limit=page_size)
        self.truncated = False
        self.cancelled = False
        self.pages = 0

    def __iter__(self) -> Iterator[RecordBatch]:
        p = self._paginator
        self.cursor = PaginationCursor(limit=self.page_size)
        self.truncated = False
        self.cancelled = False
        self.pages = 0
        while True:
            if p.cancel is not None and p.cancel.is_set():
                self.cancelled = True
                logger.info("pagination cancelled at offset=%d", self.cursor.offset)
                return
            p.gate.acquire()
            page = p.client.run(
                self.request.with_params(limit=str(self.cursor.limit), offset=str(self.cursor.offset))
            )
            if not page:
                return
            self.pages += 1
            yield page
            self.cursor.advance(len(page), p.record_weight)
            if self.cursor.accumulated_size_estimate > p.size_cap:
                self.truncated = True
                logger.warning(
                    "size cap reached (~%d bytes after %d records); results are partial",
                    self.cursor.accumulated_size_estimate,
                    self.cursor.records_seen,
                )
                return

    def collect(self) -> Tuple[RecordBatch, bool]:
        """Drain the run. Returns (records, truncated)."""
        records: RecordBatch = []
        for page in self:
            records.extend(page)
        return records, self.truncated


class Paginator:
    def __init__(
        self,
        client: QueryClient,
        gate: Optional[RateGate] = None,
        size_cap: int = DEFAULT_SIZE_CAP,
        record_weight: int = DEFAULT_RECORD_WEIGHT,
        cancel: Optional[threading.Event] = None,
    ) -> None:
        self.client = client
        self.gate = gate or RateGate(client.settings.rate_interval)
        self.size_cap = size_cap
        self.record_weight = record_weight
        self.cancel = cancel

    def pull(self, template: str, fixed_params: Mapping[str, str], page_size: int = 100) -> PageRun:
        if page_size <= 0:
            raise ValueError("page_size must be > 0")
        return PageRun(self, QueryRequest(template, dict(fixed_params)), page_size)


@dataclass
class TransactionPull:
    records: RecordBatch
    truncated_addresses: List[str]

    @property
    def truncated(self) -> bool:
        return bool(self.truncated_addresses)


def query_ethereum_transactions(
    paginator: Paginator,
    addresses: List[str],
    page_size: int = 100,
) -> TransactionPull:
    """Pull every transaction page for each address, one independent run per
    address, all paced by the paginator's shared gate."""
    template = load_sql_query("ethereum_transactions.sql")
    records: RecordBatch = []
    truncated: List[str] = []
    for address in addresses:
        run = paginator.pull(template, {"wallet_address": address}, page_size)
        rows, was_truncated = run.collect()
        logger.info("address=%s pages=%d records=%d", address, run.pages, len(rows))
        records.extend(rows)
        if was_truncated:
            truncated.append(address)
    return TransactionPull(records, truncated)
