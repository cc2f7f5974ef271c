from __future__ import annotations

from dataclasses import dataclass, field
from importlib import resources
from typing import Any, Mapping, Optional

from ..config import Settings
from ..errors import MalformedResponseError, RemoteRejectedError, UnauthenticatedError
from ..records import Record, RecordBatch, to_scalar
from ..transport import Transport, send_request


@dataclass(frozen=True)
class QueryRequest:
    """SQL template with ``{{name}}`` placeholders and their string values."""

    template: str
    params: Mapping[str, str] = field(default_factory=dict)

    def render(self) -> str:
        # Literal text substitution: the remote endpoint templates the SQL, not us.
        query = self.template
        for key, value in self.params.items():
            query = query.replace("{{" + key + "}}", value)
        return query

    def with_params(self, **extra: str) -> "QueryRequest":
        return QueryRequest(self.template, {**self.params, **extra})


def load_sql_query(filename: str) -> str:
    """Load a SQL template bundled under ``osint_data_feed/transpose/sql``."""
    return resources.files(__package__).joinpath("sql", filename).read_text(encoding="utf-8")


def _to_record(row: Any) -> Record:
    if not isinstance(row, dict):
        raise MalformedResponseError(f"expected an object per result row, got {type(row).__name__}", row)
    return {str(k): to_scalar(v) for k, v in row.items()}


class QueryClient:
    """Executes a single query against the Transpose SQL endpoint.

    No retries: a rejected or failed call is surfaced to the caller as the
    matching FeedError subclass.
    """

    def __init__(self, settings: Settings, transport: Optional[Transport] = None) -> None:
        self.settings = settings
        self.transport = transport or send_request

    @property
    def url(self) -> str:
        return f"{self.settings.transpose_url.rstrip('/')}/sql"

    def execute(self, query_text: str) -> RecordBatch:
        api_key = self.settings.transpose_api_key
        if not api_key:
            raise UnauthenticatedError("Transpose API key not set")

        resp = self.transport(
            "POST",
            self.url,
            {"X-API-KEY": api_key, "Content-Type": "application/json"},
            {"query": query_text},
            self.settings.http_timeout,
        )
        if resp.status in (401, 403):
            raise UnauthenticatedError(f"Transpose rejected the API key (status {resp.status})")
        if not resp.ok:
            raise RemoteRejectedError(resp.status, resp.text())

        try:
            payload = resp.json()
        except ValueError as e:
            raise MalformedResponseError(f"response is not JSON: {e}", resp.text()) from e

        results = payload.get("results") if isinstance(payload, dict) else None
        if not isinstance(results, list):
            raise MalformedResponseError("response has no 'results' array", payload)
        return [_to_record(row) for row in results]

    def run(self, request: QueryRequest) -> RecordBatch:
        return self.execute(request.render())


def query_ethereum_account(client: QueryClient, address: str) -> RecordBatch:
    request = QueryRequest(load_sql_query("ethereum_accounts.sql"), {"address": address})
    return client.run(request)
