"""Error types raised by the ingestion and search pipeline."""
from typing import Optional


class CatalogError(Exception):
    """Base class for all bookfeed errors."""


class InvalidRecord(CatalogError, ValueError):
    """Upstream item could not be normalized (e.g. missing title)."""


class InvalidQuery(CatalogError, ValueError):
    """Search query is empty after normalization."""


class UpstreamError(CatalogError):
    """Upstream API returned a non-2xx status or could not be reached."""

    def __init__(self, message: str, status: Optional[int] = None, url: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.url = url


class StoreError(CatalogError):
    """Database error other than an intentionally ignored dedup conflict."""
