"""Tests for cached title search."""
import asyncio

import httpx
import pytest

from bookfeed.async_client import AsyncHttpClient, GoogleBooksProvider
from bookfeed.errors import InvalidQuery, UpstreamError
from bookfeed.models import BookRecord
from bookfeed.search import SearchCache, SearchResolver, normalize_query


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.mark.parametrize("query", ["", "   ", None])
def test_blank_query_rejected(db, fake_search_provider, query):
    resolver = SearchResolver(db, fake_search_provider())

    with pytest.raises(InvalidQuery):
        asyncio.run(resolver.search(query))


def test_normalize_query():
    assert normalize_query("  DuNe ") == "dune"
    assert normalize_query(None) == ""


def test_store_hit_skips_upstream(db, fake_search_provider):
    db.insert_book_if_absent(BookRecord(title="Dune"), db.upsert_author("Frank Herbert"))
    provider = fake_search_provider()
    resolver = SearchResolver(db, provider)

    results = asyncio.run(resolver.search("dune"))

    assert [b.title for b in results] == ["Dune"]
    assert provider.calls == []


def test_cache_hit_skips_store(db, fake_search_provider, monkeypatch):
    db.insert_book_if_absent(BookRecord(title="Dune"), db.upsert_author("Frank Herbert"))
    resolver = SearchResolver(db, fake_search_provider())

    first = asyncio.run(resolver.search("Dune"))

    def no_store(query):
        raise AssertionError("store should not be queried")

    monkeypatch.setattr(db, "find_books_by_title_substring", no_store)
    second = asyncio.run(resolver.search("  dUNE "))

    assert second == first


def test_injected_cache_is_used(db, fake_search_provider):
    cache = SearchCache(ttl_seconds=1)

    resolver = SearchResolver(db, fake_search_provider(), cache=cache)

    assert resolver.cache is cache


def test_cache_entry_expires(db, fake_search_provider, monkeypatch):
    db.insert_book_if_absent(BookRecord(title="Dune"), db.upsert_author("Frank Herbert"))
    clock = FakeClock()
    resolver = SearchResolver(db, fake_search_provider(), cache=SearchCache(300, clock=clock))
    store_queries = []
    original = db.find_books_by_title_substring

    def counting_lookup(query):
        store_queries.append(query)
        return original(query)

    monkeypatch.setattr(db, "find_books_by_title_substring", counting_lookup)

    asyncio.run(resolver.search("dune"))
    clock.now += 299
    asyncio.run(resolver.search("dune"))
    assert store_queries == ["dune"]

    clock.now += 1
    third = asyncio.run(resolver.search("dune"))
    assert store_queries == ["dune", "dune"]
    assert [b.title for b in third] == ["Dune"]


def test_modifying_results_does_not_touch_cache(db, fake_search_provider):
    db.insert_book_if_absent(BookRecord(title="Dune"), db.upsert_author("Frank Herbert"))
    resolver = SearchResolver(db, fake_search_provider())

    asyncio.run(resolver.search("dune")).clear()

    assert [b.title for b in asyncio.run(resolver.search("dune"))] == ["Dune"]


def test_search_cache_basics():
    clock = FakeClock()
    cache = SearchCache(10, clock=clock)

    assert cache.get("dune") is None
    cache.set("dune", [])
    assert cache.get("dune") == []
    assert len(cache) == 1

    clock.now += 10
    assert cache.get("dune") is None
    assert len(cache) == 0


def test_falls_back_to_google_books(db, fake_search_provider, make_volume):
    provider = fake_search_provider([
        make_volume("Hyperion", author="Dan Simmons", categories=["Fiction"], publishedDate="1989"),
        {"volumeInfo": {}},
    ])
    resolver = SearchResolver(db, provider, max_results=10)

    results = asyncio.run(resolver.search(" Hyperion "))

    assert provider.calls == [("Hyperion", 10)]
    assert len(results) == 1
    book = results[0]
    assert book.title == "Hyperion"
    assert book.author_id is None
    assert book.genre == "Fiction"
    assert book.published_year == 1989
    assert db.count_books() == 1


def test_fallback_does_not_duplicate_known_titles(db, fake_search_provider, make_volume):
    db.insert_book_if_absent(BookRecord(title="Dune Messiah"), db.upsert_author("Frank Herbert"))
    provider = fake_search_provider([make_volume("Dune Messiah"), make_volume("Dune Chronicles")])
    resolver = SearchResolver(db, provider)

    # "chronicles" misses the store, so upstream is asked
    results = asyncio.run(resolver.search("chronicles"))

    assert sorted(b.title for b in results) == ["Dune Chronicles", "Dune Messiah"]
    assert db.count_books() == 2


def test_empty_upstream_returns_empty_list(db, fake_search_provider):
    resolver = SearchResolver(db, fake_search_provider([]))

    assert asyncio.run(resolver.search("nothing")) == []
    assert db.count_books() == 0


def test_upstream_error_propagates_and_is_not_cached(db, fake_search_provider):
    provider = fake_search_provider(error=UpstreamError("boom", status=500))
    resolver = SearchResolver(db, provider)

    with pytest.raises(UpstreamError):
        asyncio.run(resolver.search("dune"))
    assert len(resolver.cache) == 0

    provider.error = None
    assert asyncio.run(resolver.search("dune")) == []
    assert len(provider.calls) == 2


def test_upstream_500_over_http(db):
    def handler(request):
        return httpx.Response(500, json={"error": "backend"})

    async def run():
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        async with AsyncHttpClient(max_retries=1, client=client) as http:
            resolver = SearchResolver(db, GoogleBooksProvider(http))
            return await resolver.search("dune")

    with pytest.raises(UpstreamError) as excinfo:
        asyncio.run(run())
    assert excinfo.value.status == 500
