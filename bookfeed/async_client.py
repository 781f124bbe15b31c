"""Async HTTP client and upstream catalog providers."""
import asyncio
import random
import logging
import urllib.parse
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from bookfeed.errors import UpstreamError
from bookfeed.parse import GOOGLE_BOOKS, OPEN_LIBRARY, items_from_response

logger = logging.getLogger(__name__)

USER_AGENT = "bookfeed/1.0 (catalog ingestion)"


@dataclass
class JsonResponse:
    """Status code plus decoded JSON body (None if the body was not JSON)."""
    status: int
    body: Any

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class AsyncHttpClient:
    """Async JSON client with bounded concurrency, retries and backoff."""

    def __init__(
        self,
        timeout: int = 10,
        max_retries: int = 3,
        base_backoff: float = 1.0,
        max_concurrent: int = 5,
        client: Optional[httpx.AsyncClient] = None
    ):
        """
        Initialize async client.

        Args:
            timeout: Request timeout in seconds
            max_retries: Maximum number of attempts per request
            base_backoff: Base delay for exponential backoff
            max_concurrent: Maximum concurrent requests
            client: Pre-built httpx client (tests pass one with a mock transport)
        """
        self.max_retries = max(1, max_retries)
        self.base_backoff = base_backoff
        self.semaphore = asyncio.Semaphore(max_concurrent)
        self.client = client or httpx.AsyncClient(
            timeout=timeout,
            headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
            follow_redirects=True
        )

    async def fetch_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> JsonResponse:
        """
        GET a URL and decode its JSON body.

        429 and 5xx responses and transport errors are retried. Once retries
        are exhausted the last response is returned as-is; a transport error
        on the last attempt raises UpstreamError.
        """
        async with self.semaphore:
            for attempt in range(self.max_retries):
                try:
                    logger.info(f"Request attempt {attempt + 1}/{self.max_retries}: {url}")
                    response = await self.client.get(url, params=params)
                except httpx.HTTPError as e:
                    logger.warning(f"Transport error on attempt {attempt + 1}: {e}")
                    if attempt < self.max_retries - 1:
                        await self._backoff(attempt)
                        continue
                    raise UpstreamError(f"Request to {url} failed: {e}", url=url) from e

                if response.status_code == 429 or response.status_code >= 500:
                    logger.warning(f"Retryable status {response.status_code} on attempt {attempt + 1}")
                    if attempt < self.max_retries - 1:
                        await self._backoff(attempt)
                        continue

                try:
                    body = response.json()
                except ValueError:
                    body = None
                return JsonResponse(status=response.status_code, body=body)

    async def _backoff(self, attempt: int):
        """Sleep with exponential backoff and jitter."""
        delay = self.base_backoff * (2 ** attempt)
        total_delay = delay + random.uniform(0, delay)
        logger.info(f"Backing off for {total_delay:.2f} seconds")
        await asyncio.sleep(total_delay)

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


class CatalogProvider:
    """Base class for a paginated upstream catalog."""

    name = ""
    page_cap = 1

    def __init__(self, http: AsyncHttpClient):
        self.http = http

    async def fetch_page(self, subject: str, offset: int, limit: int) -> List[Dict[str, Any]]:
        raise NotImplementedError

    async def _get_json(self, url: str, params: Dict[str, Any]) -> Dict[str, Any]:
        response = await self.http.fetch_json(url, params)
        if not response.ok:
            logger.error(f"{self.name} request failed with status {response.status}: {url}")
            raise UpstreamError(
                f"{self.name} request failed with status {response.status}",
                status=response.status,
                url=url
            )
        if not isinstance(response.body, dict):
            raise UpstreamError(f"{self.name} returned a non-JSON body", status=response.status, url=url)
        return response.body


class GoogleBooksProvider(CatalogProvider):
    """Google Books volumes API (commercial catalog)."""

    name = GOOGLE_BOOKS
    page_cap = 40
    BASE_URL = "https://www.googleapis.com/books/v1/volumes"

    def __init__(self, http: AsyncHttpClient, api_key: Optional[str] = None):
        super().__init__(http)
        self.api_key = api_key

    def _params(self, query: str, max_results: int, start_index: int = 0) -> Dict[str, Any]:
        params = {
            "q": query,
            "maxResults": min(max_results, self.page_cap),
            "startIndex": start_index
        }
        if self.api_key:
            params["key"] = self.api_key
        return params

    async def fetch_page(self, subject: str, offset: int, limit: int) -> List[Dict[str, Any]]:
        """One page of volumes for ``subject:<subject>``."""
        body = await self._get_json(self.BASE_URL, self._params(f"subject:{subject}", limit, offset))
        return items_from_response(body, self.name)

    async def search(self, query: str, max_results: int = 20) -> List[Dict[str, Any]]:
        """Free-text volume search (not scoped to a subject)."""
        body = await self._get_json(self.BASE_URL, self._params(query, max_results))
        return items_from_response(body, self.name)


class OpenLibraryProvider(CatalogProvider):
    """Open Library subjects API (library subjects)."""

    name = OPEN_LIBRARY
    page_cap = 100
    BASE_URL = "https://openlibrary.org"

    @staticmethod
    def subject_slug(subject: str) -> str:
        return subject.strip().lower().replace(" ", "_")

    async def fetch_page(self, subject: str, offset: int, limit: int) -> List[Dict[str, Any]]:
        """One page of works for a subject."""
        url = f"{self.BASE_URL}/subjects/{urllib.parse.quote(self.subject_slug(subject))}.json"
        body = await self._get_json(url, {"limit": min(limit, self.page_cap), "offset": offset})
        return items_from_response(body, self.name)


def build_providers(http: AsyncHttpClient, google_api_key: Optional[str] = None) -> Dict[str, CatalogProvider]:
    """Both upstream providers keyed by name."""
    return {
        GOOGLE_BOOKS: GoogleBooksProvider(http, api_key=google_api_key),
        OPEN_LIBRARY: OpenLibraryProvider(http),
    }
