"""Cached title search with live Google Books fallback."""
import time
import logging
from typing import Callable, Dict, List, Optional, Tuple

from bookfeed.async_client import GoogleBooksProvider
from bookfeed.database import Database
from bookfeed.errors import InvalidQuery
from bookfeed.models import Book
from bookfeed.parse import parse_items

logger = logging.getLogger(__name__)

DEFAULT_CACHE_TTL = 5 * 60


def normalize_query(query: Optional[str]) -> str:
    return (query or "").strip().lower()


class SearchCache:
    """
    Search results keyed by normalized query, valid for ``ttl_seconds``.

    Expired entries are only noticed (and dropped) when read. Lists go in
    and come out as copies, so callers may modify what they get.
    """

    def __init__(self, ttl_seconds: float = DEFAULT_CACHE_TTL, clock: Callable[[], float] = time.time):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._entries: Dict[str, Tuple[float, List[Book]]] = {}

    def get(self, key: str) -> Optional[List[Book]]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        ts, results = entry
        if self.clock() - ts >= self.ttl_seconds:
            del self._entries[key]
            return None
        return list(results)

    def set(self, key: str, results: List[Book]) -> None:
        self._entries[key] = (self.clock(), list(results))

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self):
        return len(self._entries)


class SearchResolver:
    """Answer title queries from cache, then the store, then Google Books."""

    def __init__(
        self,
        store: Database,
        provider: GoogleBooksProvider,
        cache: Optional[SearchCache] = None,
        max_results: int = 20
    ):
        self.store = store
        self.provider = provider
        self.cache = cache if cache is not None else SearchCache()
        self.max_results = max_results

    async def search(self, query: str) -> List[Book]:
        """
        Resolve a free-text query.

        Args:
            query: Raw user input

        Returns:
            Matching books; an empty list when nothing matches anywhere

        Raises:
            InvalidQuery: if the query is blank
            UpstreamError: if the store has no match and Google Books fails
        """
        key = normalize_query(query)
        if not key:
            raise InvalidQuery("query is required")

        cached = self.cache.get(key)
        if cached is not None:
            logger.info(f"Cache hit: {key}")
            return cached
        logger.info(f"Cache miss: {key}")

        results = self.store.find_books_by_title_substring(key)
        if results:
            logger.info(f"DB hit for {key!r} -> {len(results)} rows")
            self.cache.set(key, results)
            return results

        results = await self._fetch_remote(query.strip())
        self.cache.set(key, results)
        return results

    async def _fetch_remote(self, query: str) -> List[Book]:
        # Search-driven inserts keep the author as a display name only
        items = await self.provider.search(query, self.max_results)
        records = parse_items(items, self.provider.name)
        if not records:
            logger.info(f"Google Books returned nothing usable for {query!r}")
            return []

        with self.store.transaction() as cur:
            inserted = self.store.insert_books_by_title(records, cur)

        results = self.store.find_books_by_titles(r.title for r in records)
        logger.info(f"Google Books -> inserted {inserted}, selected {len(results)} rows for {query!r}")
        return results
