"""Transpose SQL API: single queries and rate-limited offset pagination."""

__all__ = [
    "api",
    "pagination",
]
