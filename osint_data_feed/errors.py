"""Exception hierarchy shared by the API clients and the record sinks."""

from __future__ import annotations

from typing import Any, Optional


class FeedError(Exception):
    """Base class for every error raised by osint_data_feed."""


class UnauthenticatedError(FeedError):
    """Credential missing or rejected by the remote. Never retried."""


class RemoteRejectedError(FeedError):
    def __init__(self, status: int, body: str = "") -> None:
        super().__init__(f"remote rejected request with status {status}")
        self.status = status
        self.body = body


class MalformedResponseError(FeedError):
    def __init__(self, message: str, payload: Any = None) -> None:
        super().__init__(message)
        self.payload = payload


class TransportError(FeedError):
    """Connection-level failure (DNS, refused, reset, timeout)."""


class SinkError(FeedError):
    def __init__(self, backend: str, message: str) -> None:
        super().__init__(f"[{backend}] {message}")
        self.backend = backend


class SchemaMismatchError(SinkError):
    def __init__(self, backend: str, table: str, fields: Optional[list] = None, message: str = "") -> None:
        fields = list(fields or [])
        detail = message or f"unknown columns for {table}: {', '.join(fields)}"
        super().__init__(backend, detail)
        self.table = table
        self.fields = fields


class ConnectionLostError(SinkError):
    pass
