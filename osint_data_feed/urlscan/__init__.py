"""urlscan.io API: scan submission, result polling and artifact downloads."""

__all__ = [
    "api",
    "session",
]
