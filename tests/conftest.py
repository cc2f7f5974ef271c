from __future__ import annotations

import json
from dataclasses import replace
from pathlib import Path
from typing import Any, Callable, List, Union

import pytest

from osint_data_feed.config import Settings
from osint_data_feed.transport import HttpResponse


def json_response(status: int, payload: Any) -> HttpResponse:
    return HttpResponse(status, json.dumps(payload).encode("utf-8"), {"Content-Type": "application/json"})


Scripted = Union[HttpResponse, Exception, Callable[..., HttpResponse]]


class FakeTransport:
    """Scripted stand-in for ``send_request``.

    Each route matches on method and a URL fragment and replays its responses
    in order; the last one repeats forever.
    """

    def __init__(self) -> None:
        self.routes: List[tuple] = []
        self.calls: List[tuple] = []

    def add(self, method: str, fragment: str, *responses: Scripted) -> "FakeTransport":
        self.routes.append((method, fragment, list(responses)))
        return self

    def calls_to(self, fragment: str) -> List[tuple]:
        return [c for c in self.calls if fragment in c[1]]

    def __call__(self, method, url, headers, json_body=None, timeout=30.0) -> HttpResponse:
        self.calls.append((method, url, dict(headers), json_body))
        for m, fragment, queue in self.routes:
            if m == method and fragment in url:
                resp = queue.pop(0) if len(queue) > 1 else queue[0]
                if isinstance(resp, Exception):
                    raise resp
                if callable(resp):
                    return resp(method, url, headers, json_body)
                return resp
        raise AssertionError(f"unexpected request {method} {url}")


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: List[float] = []

    def monotonic(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture()
def fake_transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture()
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(
        transpose_api_key="transpose-test-key",
        urlscan_api_key="urlscan-test-key",
        transpose_url="https://transpose.test",
        urlscan_url="https://urlscan.test/api/v1",
        urlscan_site_url="https://urlscan.test",
        data_dir=tmp_path / "data",
        backends=("duckdb", "sqlite"),
        duckdb_path=tmp_path / "db" / "osint.duckdb",
        sqlite_path=tmp_path / "db" / "osint.sqlite",
        rate_interval=0.0,
    )


@pytest.fixture()
def respond_json() -> Callable[[int, Any], HttpResponse]:
    return json_response


@pytest.fixture()
def no_key_settings(settings: Settings) -> Settings:
    return replace(settings, transpose_api_key=None, urlscan_api_key=None)


def offline_path(tmp_path: Path, name: str) -> Path:
    """A database path whose parent is a regular file, so it can never be opened."""
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")
    return blocker / name


@pytest.fixture()
def offline_db_path(tmp_path: Path) -> Callable[[str], Path]:
    return lambda name: offline_path(tmp_path, name)