"""Shared fixtures."""
import pytest

from bookfeed.database import Database
from bookfeed.errors import UpstreamError


@pytest.fixture
def db():
    """Empty SQLite-backed store with the full schema."""
    database = Database(use_sqlite=True, sqlite_path=":memory:")
    database.init_schema()
    yield database
    database.close()


def volume(title, author="Frank Herbert", **info):
    """Minimal Google Books volume."""
    volume_info = {"title": title, **info}
    if author is not None:
        volume_info["authors"] = [author]
    return {"id": title, "volumeInfo": volume_info}


class FakeProvider:
    """Paginated provider serving a fixed list of items."""

    def __init__(self, items, name="google_books", page_cap=2):
        self.items = items
        self.name = name
        self.page_cap = page_cap
        self.fail_at = set()
        self.calls = []

    async def fetch_page(self, subject, offset, limit):
        self.calls.append((subject, offset, limit))
        if offset in self.fail_at:
            raise UpstreamError("upstream unavailable", status=503)
        return self.items[offset:offset + limit]


class FakeSearchProvider:
    """Google Books stand-in for free-text search."""

    name = "google_books"

    def __init__(self, items=None, error=None):
        self.items = items or []
        self.error = error
        self.calls = []

    async def search(self, query, max_results=20):
        self.calls.append((query, max_results))
        if self.error:
            raise self.error
        return self.items[:max_results]


@pytest.fixture
def make_volume():
    return volume


@pytest.fixture
def fake_provider():
    return FakeProvider


@pytest.fixture
def fake_search_provider():
    return FakeSearchProvider
