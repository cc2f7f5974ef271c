from __future__ import annotations

import json
from dataclasses import dataclass, field
from http.client import HTTPException
from typing import Any, Callable, Dict, Optional
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from .errors import TransportError


USER_AGENT = "osint-data-feed/0.1"


@dataclass(frozen=True)
class HttpResponse:
    status: int
    body: bytes = b""
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        """Decode the body as JSON. Raises ValueError on invalid payloads."""
        return json.loads(self.body)


# (method, url, headers, json_body, timeout) -> HttpResponse
Transport = Callable[[str, str, Dict[str, str], Optional[Any], float], HttpResponse]


def send_request(
    method: str,
    url: str,
    headers: Dict[str, str],
    json_body: Optional[Any] = None,
    timeout: float = 30.0,
) -> HttpResponse:
    """Perform one HTTP request with urllib.

    Non-2xx statuses are returned, not raised; only connection-level failures
    raise TransportError. No retries happen here.
    """
    data = None
    hdrs = {"User-Agent": USER_AGENT, **headers}
    if json_body is not None:
        data = json.dumps(json_body).encode("utf-8")
        hdrs.setdefault("Content-Type", "application/json")
    req = Request(url, data=data, method=method, headers=hdrs)
    try:
        with urlopen(req, timeout=timeout) as resp:
            return HttpResponse(resp.status, resp.read(), dict(resp.headers.items()))
    except HTTPError as e:
        try:
            body = e.read() if e.fp is not None else b""
        except (HTTPException, OSError):
            body = b""
        return HttpResponse(e.code, body, dict(e.headers.items()) if e.headers else {})
    except (URLError, HTTPException, OSError) as e:
        # HTTPException and OSError can also surface while the body streams in
        raise TransportError(f"{method} {url} failed: {e}") from e
