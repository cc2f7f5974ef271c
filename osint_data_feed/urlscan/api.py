from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from ..config import Settings
from ..errors import MalformedResponseError, UnauthenticatedError
from ..records import Record, Scalar
from ..transport import HttpResponse, Transport, send_request


VISIBILITY = "private"


@dataclass(frozen=True)
class ScanHandle:
    """Identity of one submitted scan. Never reused across scans."""

    id: str
    domain: str
    submitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    result_url: Optional[str] = None
    api_url: Optional[str] = None
    visibility: Optional[str] = None
    useragent: Optional[str] = None
    country: Optional[str] = None

    def to_record(self) -> Record:
        return {
            "uuid": self.id,
            "domain": self.domain,
            "result_url": self.result_url,
            "api_url": self.api_url,
            "visibility": self.visibility,
            "useragent": self.useragent,
            "country": self.country,
        }


def parse_submission(domain: str, payload: Any) -> ScanHandle:
    """Map the ``POST /scan/`` response onto a ScanHandle."""
    if not isinstance(payload, dict) or not isinstance(payload.get("uuid"), str) or not payload["uuid"]:
        raise MalformedResponseError("scan submission response has no uuid", payload)
    options = payload.get("options") or {}
    return ScanHandle(
        id=payload["uuid"],
        domain=domain,
        result_url=payload.get("result"),
        api_url=payload.get("api"),
        visibility=payload.get("visibility"),
        useragent=options.get("useragent") if isinstance(options, dict) else None,
        country=payload.get("country"),
    )


class UrlscanClient:
    """Thin request layer. Returns raw responses; the session interprets statuses."""

    def __init__(self, settings: Settings, transport: Optional[Transport] = None) -> None:
        self.settings = settings
        self.transport = transport or send_request

    def _headers(self) -> Dict[str, str]:
        api_key = self.settings.urlscan_api_key
        if not api_key:
            raise UnauthenticatedError("URLScan API key not set")
        return {"API-Key": api_key}

    def _get(self, url: str) -> HttpResponse:
        return self.transport("GET", url, self._headers(), None, self.settings.http_timeout)

    def submit(self, domain: str) -> HttpResponse:
        headers = {**self._headers(), "Content-Type": "application/json"}
        body = {"url": domain, "visibility": VISIBILITY}
        url = f"{self.settings.urlscan_url.rstrip('/')}/scan/"
        return self.transport("POST", url, headers, body, self.settings.http_timeout)

    def result(self, uuid: str) -> HttpResponse:
        return self._get(f"{self.settings.urlscan_url.rstrip('/')}/result/{uuid}/")

    def screenshot(self, uuid: str) -> HttpResponse:
        return self._get(f"{self.settings.urlscan_site_url.rstrip('/')}/screenshots/{uuid}.png")

    def dom(self, uuid: str) -> HttpResponse:
        return self._get(f"{self.settings.urlscan_site_url.rstrip('/')}/dom/{uuid}/")


def _text(value: Any) -> Scalar:
    if value is None or isinstance(value, str):
        return value
    return str(value)


def _int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return None
    return None


def extract_page_verdict(full_scan: Any) -> Tuple[Record, Record]:
    """Pull the page metadata and the urlscan verdict out of a full result.

    Pure; missing or oddly-typed sections yield empty records instead of errors.
    """
    if not isinstance(full_scan, dict):
        return {}, {}
    page = full_scan.get("page")
    page = page if isinstance(page, dict) else {}
    verdicts = full_scan.get("verdicts")
    verdict = verdicts.get("urlscan") if isinstance(verdicts, dict) else None
    verdict = verdict if isinstance(verdict, dict) else {}

    page_metadata: Record = {
        "asn": _text(page.get("asn")),
        "ip": _text(page.get("ip")),
        "title": _text(page.get("title")),
        "country": _text(page.get("country")),
    }
    verdict_record: Record = {
        "verdict_score": _int(verdict.get("score")),
        "verdict_brands": json.dumps(verdict.get("brands", [])),
    }
    return page_metadata, verdict_record


def scan_data_record(uuid: str, full_scan: Any) -> Record:
    """Row for ``urlscan_scan_data``: page summary plus the outgoing links."""
    page_metadata, _ = extract_page_verdict(full_scan)
    scan = full_scan if isinstance(full_scan, dict) else {}
    data = scan.get("data") if isinstance(scan.get("data"), dict) else {}
    lists = scan.get("lists") if isinstance(scan.get("lists"), dict) else {}
    ips = lists.get("ips") if isinstance(lists.get("ips"), list) else []
    return {
        "uuid": uuid,
        "ip": _text(ips[0]) if ips else page_metadata["ip"],
        "data_links": json.dumps(data.get("links", [])),
        "page_asn": page_metadata["asn"],
        "page_ip": page_metadata["ip"],
        "page_country": page_metadata["country"],
        "page_title": page_metadata["title"],
    }
