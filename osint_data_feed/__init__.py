"""OSINT Data Feed - investigative data retrieval for blockchain accounts and domains.

Provides:
- Transpose SQL API client with rate-limited offset pagination
- urlscan.io submit/poll/collect scan workflow
- Idempotent DuckDB, SQLite and PostgreSQL persistence with multi-backend fan-out
"""

__version__ = "0.1.0"

# Expose main submodules
from . import storage
from . import transpose
from . import urlscan

__all__ = ["storage", "transpose", "urlscan", "__version__"]
