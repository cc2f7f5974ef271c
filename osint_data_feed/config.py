"""Runtime settings: API credentials, endpoints, backends and pacing knobs."""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Mapping, Optional, Tuple

from dotenv import dotenv_values


SUPPORTED_BACKENDS = ("duckdb", "sqlite", "postgres")


@dataclass(frozen=True)
class Settings:
    transpose_api_key: Optional[str] = None
    urlscan_api_key: Optional[str] = None
    transpose_url: str = "https://api.transpose.io"
    urlscan_url: str = "https://urlscan.io/api/v1"
    urlscan_site_url: str = "https://urlscan.io"
    data_dir: Path = Path("data")
    backends: Tuple[str, ...] = ("duckdb",)
    duckdb_path: Path = Path("data/osint.duckdb")
    sqlite_path: Path = Path("data/osint.sqlite")
    postgres_dsn: Optional[str] = None
    rate_interval: float = 1.0
    page_size: int = 100
    size_cap: int = 1_000_000
    record_weight: int = 1000
    poll_interval: float = 5.0
    poll_timeout: float = 120.0
    http_timeout: float = 30.0

    def __post_init__(self) -> None:
        unknown = [b for b in self.backends if b not in SUPPORTED_BACKENDS]
        if unknown:
            raise ValueError(f"unsupported backend(s): {', '.join(unknown)}")
        if "postgres" in self.backends and not self.postgres_dsn:
            raise ValueError("postgres backend selected but no DSN configured (OSINT_POSTGRES_DSN)")
        if self.page_size <= 0:
            raise ValueError("page_size must be > 0")
        # A zero backoff would never reach poll_timeout
        if self.poll_interval <= 0:
            raise ValueError("poll_interval must be > 0")

    def with_overrides(self, **changes) -> "Settings":
        """Return a copy with the non-None values in ``changes`` applied."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None, dotenv_path: Optional[str] = None) -> "Settings":
        """Build settings from a ``.env`` file overlaid with the process environment.

        Process variables win over the file, matching python-dotenv's
        ``load_dotenv(override=False)``. Passing ``env`` skips both.
        """
        if env is None:
            merged = {k: v for k, v in dotenv_values(dotenv_path or ".env").items() if v is not None}
            merged.update(os.environ)
            env = merged

        data_dir = Path(env.get("OSINT_DATA_DIR", "data"))
        backends = tuple(
            b.strip().lower() for b in env.get("OSINT_BACKENDS", "duckdb").split(",") if b.strip()
        )
        return cls(
            transpose_api_key=env.get("TRANSPOSE_API_KEY") or None,
            urlscan_api_key=env.get("URLSCAN_API_KEY") or None,
            data_dir=data_dir,
            backends=backends,
            duckdb_path=Path(env.get("OSINT_DUCKDB_PATH", str(data_dir / "osint.duckdb"))),
            sqlite_path=Path(env.get("OSINT_SQLITE_PATH", str(data_dir / "osint.sqlite"))),
            postgres_dsn=env.get("OSINT_POSTGRES_DSN") or None,
        )
