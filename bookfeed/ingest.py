"""Resumable paginated ingestion from upstream catalogs into the store."""
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional

from bookfeed.async_client import CatalogProvider
from bookfeed.database import Database
from bookfeed.errors import InvalidRecord, StoreError, UpstreamError
from bookfeed.parse import GOOGLE_BOOKS, OPEN_LIBRARY, normalize_item
from bookfeed.progress import ProgressTracker

logger = logging.getLogger(__name__)


class FetchOrchestrator:
    """
    Drives paginated retrieval for one (provider, subject) task at a time.

    Each page is written in a single transaction and each item in its own
    savepoint, so a bad record is skipped without losing the rest of the
    page. The tracker only advances after a page commits; an upstream
    failure stops the task and the next call resumes from the last good
    offset.
    """

    def __init__(
        self,
        store: Database,
        providers: Mapping[str, CatalogProvider],
        progress: Optional[ProgressTracker] = None
    ):
        self.store = store
        self.providers = providers
        self.progress = progress or ProgressTracker()

    def _provider(self, name: str) -> CatalogProvider:
        try:
            return self.providers[name]
        except KeyError:
            raise ValueError(f"Unsupported provider {name}") from None

    async def run_fetch(self, provider: str, subject: str, target_count: int) -> int:
        """
        Fetch and store books for one subject until the upstream runs dry or
        ``target_count`` items have been paged through.

        Args:
            provider: Provider name (google_books or open_library)
            subject: Subject/genre to page through
            target_count: Offset at which to stop

        Returns:
            Number of books newly inserted by this call
        """
        client = self._provider(provider)
        key = (provider, subject)
        offset = self.progress.get_offset(key)
        inserted_count = 0
        logger.info(f"Fetching {provider}/{subject} from offset {offset} (target {target_count})")

        while offset < target_count:
            page_size = min(client.page_cap, target_count - offset)
            try:
                items = await client.fetch_page(subject, offset, page_size)
            except UpstreamError as e:
                logger.error(f"Fetch {provider}/{subject} stopped at offset {offset}: {e}")
                break

            if not items:
                logger.info(f"No more results for {provider}/{subject} at offset {offset}")
                break

            try:
                inserted_count += self._store_page(items, provider, subject)
            except StoreError as e:
                logger.error(f"Page at offset {offset} for {provider}/{subject} rolled back: {e}")
                break

            offset += len(items)
            self.progress.set_offset(key, offset)
            logger.info(
                f"Fetched {len(items)} books from {provider}/{subject} "
                f"(offset: {offset}, inserted: {inserted_count})"
            )

        logger.info(f"Inserted {inserted_count} books for {provider}/{subject}")
        return inserted_count

    def _store_page(self, items: List[Any], provider: str, subject: str) -> int:
        # No await inside: the whole page is one uninterrupted unit of work
        inserted = 0
        with self.store.transaction() as cur:
            for item in items:
                if self._store_item(cur, item, provider, subject):
                    inserted += 1
        return inserted

    def _store_item(self, cur, item: Any, provider: str, subject: str) -> bool:
        try:
            record = normalize_item(item, provider, genre=subject)
        except InvalidRecord as e:
            logger.warning(f"Skipping {provider}/{subject} item: {e}")
            return False

        try:
            with self.store.savepoint(cur):
                author_id = self.store.upsert_author(record.author_name, cur)
                result = self.store.insert_book_if_absent(record, author_id, cur)
        except StoreError as e:
            logger.warning(f"Skipping {record.title!r} by {record.author_name!r}: {e}")
            return False
        return result.inserted

    async def run_all(
        self,
        subjects: Iterable[str],
        per_subject_target: int,
        provider: str = GOOGLE_BOOKS
    ) -> int:
        """Fetch every subject in order, one after the other."""
        total_inserted = 0
        for subject in subjects:
            total_inserted += await self.run_fetch(provider, subject, per_subject_target)
        logger.info(f"Database now has {self.store.count_books()} total books")
        return total_inserted

    async def seed_if_empty(self, subject: str = "fiction", limit: int = 100, users: int = 15) -> int:
        """
        Seed an empty store from one Open Library subject, plus placeholder
        users so reviews can be attached.

        Returns:
            Number of books inserted (0 if the store already had books)
        """
        book_count = self.store.count_books()
        if book_count > 0:
            logger.info(f"DB already has {book_count} books. Skipping seed.")
            return 0

        logger.info(f"Seeding database from Open Library ({subject})...")
        with self.store.transaction() as cur:
            for i in range(1, users + 1):
                self.store.insert_user(f"User {i}", f"user{i}@example.com", cur)

        inserted = await self.run_fetch(OPEN_LIBRARY, subject, limit)
        counts: Dict[str, Any] = self.store.get_stats()
        logger.info(f"Seed done: {counts}")
        return inserted
