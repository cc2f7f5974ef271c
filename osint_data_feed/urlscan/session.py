r"""Submit/poll/collect workflow for one urlscan.io scan.

States::

    SUBMITTED -> POLLING* -> COLLECTED
        \            \
         FAILED       FAILED | TIMED_OUT

COLLECTED, FAILED and TIMED_OUT are terminal. Results are persisted in
stages as they become available: the submission row first (so the uuid is
recorded even if polling never finishes), then page/verdict columns, the
screenshot path and the DOM snapshot. Screenshot and DOM downloads are
best-effort and never change the terminal state.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional

from ..config import Settings
from ..errors import MalformedResponseError, TransportError
from ..records import Record
from ..storage.db import SinkSet, UpsertResult
from ..storage.persistence import write_screenshot
from ..throttle import Clock, SystemClock
from ..transport import Transport
from .api import ScanHandle, UrlscanClient, extract_page_verdict, parse_submission, scan_data_record


logger = logging.getLogger(__name__)

DOMAIN_TABLE = "urlscan_domain_data"
DOM_TABLE = "urlscan_dom_snapshot"
SCAN_DATA_TABLE = "urlscan_scan_data"


class SessionState(str, Enum):
    SUBMITTED = "submitted"
    POLLING = "polling"
    COLLECTED = "collected"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


TERMINAL_STATES = frozenset({SessionState.COLLECTED, SessionState.FAILED, SessionState.TIMED_OUT})


class ScanStatus(str, Enum):
    PENDING = "pending"
    READY = "ready"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


_STATUS_BY_STATE = {
    SessionState.COLLECTED: ScanStatus.READY,
    SessionState.FAILED: ScanStatus.FAILED,
    SessionState.TIMED_OUT: ScanStatus.TIMED_OUT,
}


@dataclass
class ScanResult:
    domain: str
    handle: Optional[ScanHandle] = None
    status: ScanStatus = ScanStatus.PENDING
    page_metadata: Optional[Record] = None
    verdict: Optional[Record] = None
    screenshot_bytes: Optional[bytes] = None
    screenshot_path: Optional[Path] = None
    dom_text: Optional[str] = None
    raw: Optional[dict] = None
    elapsed: float = 0.0
    http_status: Optional[int] = None
    error: Optional[str] = None
    sink_results: List[UpsertResult] = field(default_factory=list)

    @property
    def sink_failures(self) -> List[UpsertResult]:
        return [r for r in self.sink_results if not r.ok]


class ScanSession:
    """One scan, start to finish. A session is single-use."""

    def __init__(
        self,
        client: UrlscanClient,
        sinks: Optional[SinkSet] = None,
        clock: Optional[Clock] = None,
        poll_interval: float = 5.0,
        poll_timeout: float = 120.0,
        data_dir: Optional[Path] = None,
        cancel: Optional[threading.Event] = None,
    ) -> None:
        self.client = client
        self.sinks = sinks or SinkSet()
        self.clock = clock or SystemClock()
        self.poll_interval = poll_interval
        self.poll_timeout = poll_timeout
        self.data_dir = Path(data_dir) if data_dir is not None else None
        self.cancel = cancel
        self.history: List[SessionState] = []
        self.result: Optional[ScanResult] = None

    @property
    def state(self) -> Optional[SessionState]:
        return self.history[-1] if self.history else None

    def _transition(self, new_state: SessionState) -> None:
        if self.state in TERMINAL_STATES:
            raise RuntimeError(f"scan session already finished in state {self.state.value}")
        self.history.append(new_state)
        if self.result is not None and new_state in _STATUS_BY_STATE:
            self.result.status = _STATUS_BY_STATE[new_state]

    def _fail(self, message: str, http_status: Optional[int] = None) -> ScanResult:
        assert self.result is not None
        self.result.error = message
        self.result.http_status = http_status
        self._transition(SessionState.FAILED)
        logger.error("scan of %s failed: %s", self.result.domain, message)
        return self.result

    def _persist(self, table: str, record: Record) -> None:
        if not self.sinks:
            return
        assert self.result is not None
        results = self.sinks.upsert(table, "uuid", [record], partial=True)
        self.result.sink_results.extend(results)
        for r in results:
            if not r.ok:
                logger.warning("%s: %s not stored: %s", r.backend, table, r.error)

    def run(self, domain: str) -> ScanResult:
        if self.result is not None:
            raise RuntimeError("scan session already used; create a new one per scan")
        self.result = ScanResult(domain=domain)

        try:
            handle = self._submit(domain)
            if handle is None:
                return self.result
            full_scan = self._poll(handle)
        except TransportError:
            if self.state not in TERMINAL_STATES:
                self._transition(SessionState.FAILED)
            raise
        if full_scan is None:
            return self.result

        self._enrich(handle, full_scan)
        logger.info("domain %s scanned (uuid=%s)", domain, handle.id)
        return self.result

    def _submit(self, domain: str) -> Optional[ScanHandle]:
        resp = self.client.submit(domain)
        if not resp.ok:
            self._fail(f"scan submission rejected: {resp.text()[:200]}", resp.status)
            return None
        try:
            handle = parse_submission(domain, resp.json())
        except (ValueError, MalformedResponseError) as e:
            self._fail(f"unreadable submission response: {e}", resp.status)
            return None

        self.result.handle = handle
        self._transition(SessionState.SUBMITTED)
        logger.info("scan initiated for %s, uuid=%s", domain, handle.id)
        self._persist(DOMAIN_TABLE, handle.to_record())
        return handle

    def _poll(self, handle: ScanHandle) -> Optional[dict]:
        """Poll until 200, another status, the timeout, or cancellation.

        ``elapsed`` is the sum of backoff sleeps, not wall time.
        """
        assert self.result is not None
        while self.result.elapsed < self.poll_timeout:
            resp = self.client.result(handle.id)
            if resp.status == 200:
                try:
                    payload = resp.json()
                except ValueError as e:
                    self._fail(f"unreadable scan result: {e}", resp.status)
                    return None
                self.result.raw = payload if isinstance(payload, dict) else {"result": payload}
                self.result.http_status = resp.status
                self._transition(SessionState.COLLECTED)
                return self.result.raw
            if resp.status != 404:
                self._fail(f"failed to retrieve scan result (status {resp.status})", resp.status)
                return None

            if self.cancel is not None and self.cancel.is_set():
                self.result.error = "cancelled"
                self._transition(SessionState.TIMED_OUT)
                return None
            self._transition(SessionState.POLLING)
            logger.debug("scan %s not finished yet, retrying in %ss", handle.id, self.poll_interval)
            self.clock.sleep(self.poll_interval)
            self.result.elapsed += self.poll_interval

        self.result.error = f"scan not finished after {self.result.elapsed:g}s"
        self._transition(SessionState.TIMED_OUT)
        logger.warning("timeout waiting for scan %s", handle.id)
        return None

    def _enrich(self, handle: ScanHandle, full_scan: dict) -> None:
        assert self.result is not None
        page_metadata, verdict = extract_page_verdict(full_scan)
        self.result.page_metadata = page_metadata
        self.result.verdict = verdict
        self._persist(
            DOMAIN_TABLE,
            {
                "uuid": handle.id,
                "asn": page_metadata["asn"],
                "ip": page_metadata["ip"],
                "title": page_metadata["title"],
                **verdict,
            },
        )
        self._persist(SCAN_DATA_TABLE, scan_data_record(handle.id, full_scan))

        self._fetch_screenshot(handle)
        self._fetch_dom(handle)

    def _fetch_screenshot(self, handle: ScanHandle) -> None:
        assert self.result is not None
        try:
            resp = self.client.screenshot(handle.id)
        except TransportError as e:
            logger.warning("screenshot download for %s failed: %s", handle.id, e)
            return
        if not resp.ok or not resp.body:
            logger.warning("failed to download screenshot for %s (status %s)", handle.id, resp.status)
            return
        self.result.screenshot_bytes = resp.body

        if self.data_dir is None:
            return
        try:
            path = write_screenshot(self.data_dir, handle.id, resp.body)
        except OSError as e:
            logger.warning("could not write screenshot for %s: %s", handle.id, e)
            return
        self.result.screenshot_path = path
        self._persist(DOMAIN_TABLE, {"uuid": handle.id, "screenshot_path": str(path)})

    def _fetch_dom(self, handle: ScanHandle) -> None:
        assert self.result is not None
        try:
            resp = self.client.dom(handle.id)
        except TransportError as e:
            logger.warning("DOM download for %s failed: %s", handle.id, e)
            return
        text = resp.text() if resp.ok else ""
        if not text:
            logger.warning("no DOM snapshot for %s (status %s)", handle.id, resp.status)
            return
        self.result.dom_text = text
        self._persist(DOM_TABLE, {"uuid": handle.id, "dom": text})


def scan_domain(
    settings: Settings,
    domain: str,
    sinks: Optional[SinkSet] = None,
    transport: Optional[Transport] = None,
    clock: Optional[Clock] = None,
    cancel: Optional[threading.Event] = None,
) -> ScanResult:
    session = ScanSession(
        UrlscanClient(settings, transport),
        sinks=sinks,
        clock=clock,
        poll_interval=settings.poll_interval,
        poll_timeout=settings.poll_timeout,
        data_dir=settings.data_dir,
        cancel=cancel,
    )
    return session.run(domain)
