#!/usr/bin/env python3
"""Book Explorer CLI - catalog ingestion, search and browsing."""
import argparse
import asyncio
import csv
import inspect
import sys
import json
import logging
from typing import List

from tabulate import tabulate

from bookfeed.async_client import AsyncHttpClient, build_providers
from bookfeed.config import Config
from bookfeed.database import Database
from bookfeed.errors import CatalogError, UpstreamError
from bookfeed.ingest import FetchOrchestrator
from bookfeed.models import Book
from bookfeed.parse import GOOGLE_BOOKS, OPEN_LIBRARY
from bookfeed.scheduler import Scheduler
from bookfeed.search import SearchCache, SearchResolver

logger = logging.getLogger(__name__)


def setup_database(config: Config) -> Database:
    """Initialize database."""
    if config.USE_SQLITE:
        db = Database(use_sqlite=True, sqlite_path=config.SQLITE_DB_PATH)
    else:
        db = Database(config.DATABASE_URL)
    db.init_schema()
    return db


def setup_http(config: Config) -> AsyncHttpClient:
    return AsyncHttpClient(
        timeout=config.DEFAULT_TIMEOUT,
        max_retries=config.DEFAULT_MAX_RETRIES,
        max_concurrent=config.MAX_CONCURRENT_REQUESTS
    )


async def fetch_books(args, config: Config):
    """Ingest one subject from one provider."""
    with setup_database(config) as db:
        async with setup_http(config) as http:
            orchestrator = FetchOrchestrator(db, build_providers(http, config.GOOGLE_BOOKS_API_KEY))
            if args.seed:
                await orchestrator.seed_if_empty()
            inserted = await orchestrator.run_fetch(args.provider, args.subject, args.target)
            print(f"✅ Inserted {inserted} books for {args.provider}/{args.subject}")
            print(f"Database now has {db.count_books()} total books")


async def search_books(args, config: Config):
    """Search the store, falling back to Google Books."""
    with setup_database(config) as db:
        async with setup_http(config) as http:
            providers = build_providers(http, config.GOOGLE_BOOKS_API_KEY)
            resolver = SearchResolver(
                db,
                providers[GOOGLE_BOOKS],
                cache=SearchCache(config.SEARCH_CACHE_TTL),
                max_results=args.limit
            )
            try:
                books = await resolver.search(args.query)
            except UpstreamError as e:
                logger.error(f"Upstream Google Books API error: {e}")
                sys.exit(2)

            if not books:
                print("No books found.")
                return
            display_books(books, args.format)


async def run_schedule(args, config: Config):
    """Seed if empty, then sweep the configured genres periodically."""
    with setup_database(config) as db:
        async with setup_http(config) as http:
            orchestrator = FetchOrchestrator(db, build_providers(http, config.GOOGLE_BOOKS_API_KEY))
            try:
                await orchestrator.seed_if_empty()
            except CatalogError as e:
                logger.error(f"❌ Seed error: {e}")

            scheduler = Scheduler(orchestrator, provider=args.provider)
            await scheduler.schedule(
                args.genres or config.FETCH_GENRES,
                args.target or config.PER_SUBJECT_TARGET,
                args.interval_hours or config.FETCH_INTERVAL_HOURS,
                max_sweeps=args.max_sweeps
            )


async def seed_books(args, config: Config):
    with setup_database(config) as db:
        async with setup_http(config) as http:
            orchestrator = FetchOrchestrator(db, build_providers(http, config.GOOGLE_BOOKS_API_KEY))
            inserted = await orchestrator.seed_if_empty(args.subject, args.limit, args.users)
            print(f"✅ Seeded {inserted} books")


def display_books(books: List[Book], format_type: str):
    """Display books in specified format."""
    if format_type == "table":
        headers = ["ID", "Title", "Author", "Genre", "Year", "Rating"]
        rows = [
            [
                book.id,
                book.title[:50] + "..." if len(book.title) > 50 else book.title,
                book.author_str[:30] + "..." if len(book.author_str) > 30 else book.author_str,
                book.genre or "None",
                book.published_year or "Unknown",
                book.rating if book.rating is not None else "—"
            ]
            for book in books
        ]
        print("\n" + tabulate(rows, headers=headers, tablefmt="grid"))

    elif format_type == "json":
        print(json.dumps([book.to_dict() for book in books], indent=2))

    elif format_type == "compact":
        for i, book in enumerate(books, 1):
            print(f"{i}. {book.title} - {book.author_str}")


def list_books(args, config: Config):
    with setup_database(config) as db:
        if args.genre:
            books = db.list_books_by_genre(args.genre)
        else:
            books = db.list_books(limit=args.limit)
        display_books(books, args.format)


def show_book(args, config: Config):
    with setup_database(config) as db:
        book = db.find_book_by_id(args.book_id)
        if book is None:
            logger.error(f"Book {args.book_id} not found")
            sys.exit(1)
        display_books([book], args.format)


def list_authors(args, config: Config):
    with setup_database(config) as db:
        rows = [[a.id, a.name] for a in db.list_authors()]
        print("\n" + tabulate(rows, headers=["ID", "Name"], tablefmt="grid"))


def list_reviews(args, config: Config):
    with setup_database(config) as db:
        rows = [[r.id, r.user_id, r.rating, r.comment or ""] for r in db.list_reviews(args.book_id)]
        print("\n" + tabulate(rows, headers=["ID", "User", "Rating", "Comment"], tablefmt="grid"))


def add_user(args, config: Config):
    with setup_database(config) as db:
        user_id = db.insert_user(args.name, args.email)
        print(f"✅ User {user_id}: {args.name} <{args.email}>")


def add_review(args, config: Config):
    with setup_database(config) as db:
        review_id = db.insert_review(args.book_id, args.user_id, args.rating, args.comment)
        print(f"✅ Created review {review_id}")


def show_stats(args, config: Config):
    """Show database statistics."""
    with setup_database(config) as db:
        stats = db.get_stats()

        print("\n" + "=" * 50)
        print("DATABASE STATISTICS")
        print("=" * 50)
        print(f"Authors: {stats['total_authors']}")
        print(f"Books:   {stats['total_books']}")
        print(f"Users:   {stats['total_users']}")
        print(f"Reviews: {stats['total_reviews']}")
        print("=" * 50 + "\n")


def export_data(args, config: Config):
    """Export database data."""
    with setup_database(config) as db:
        books = db.list_books(limit=args.limit)

        if args.format == "json":
            data = [book.to_dict() for book in books]

            if args.output:
                with open(args.output, 'w') as f:
                    json.dump(data, f, indent=2)
                logger.info(f"✅ Exported {len(books)} books to {args.output}")
            else:
                print(json.dumps(data, indent=2))

        elif args.format == "csv":
            output_file = args.output or "books_export.csv"
            with open(output_file, 'w', newline='', encoding='utf-8') as f:
                writer = csv.writer(f)
                writer.writerow(["ID", "Title", "Author", "Genre", "Year", "Rating", "Image"])

                for book in books:
                    writer.writerow([
                        book.id,
                        book.title,
                        book.author_name or "",
                        book.genre or "",
                        book.published_year or "",
                        "" if book.rating is None else book.rating,
                        book.image_url or ""
                    ])

            logger.info(f"✅ Exported {len(books)} books to {output_file}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Book Explorer - catalog ingestion and search CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Ingest up to 200 fantasy books from Google Books
  %(prog)s fetch fantasy --target 200

  # Ingest an Open Library subject
  %(prog)s fetch science_fiction --provider open_library --target 300

  # Search (store first, Google Books if nothing matches)
  %(prog)s search "dune"

  # Sweep the configured genres every 24 hours
  %(prog)s schedule --interval-hours 24

  # Export data
  %(prog)s export --format csv --output books.csv
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")
    formats = ["table", "json", "compact"]
    providers = [GOOGLE_BOOKS, OPEN_LIBRARY]

    fetch_parser = subparsers.add_parser("fetch", help="Ingest one subject")
    fetch_parser.add_argument("subject", help="Subject/genre")
    fetch_parser.add_argument("--provider", choices=providers, default=GOOGLE_BOOKS)
    fetch_parser.add_argument("--target", type=int, default=200, help="Items to page through (default: 200)")
    fetch_parser.add_argument("--seed", action="store_true", help="Seed from Open Library first if the DB is empty")

    search_parser = subparsers.add_parser("search", help="Search for books")
    search_parser.add_argument("query", help="Search query")
    search_parser.add_argument("--limit", type=int, default=20, help="Max upstream results (default: 20)")
    search_parser.add_argument("--format", choices=formats, default="table", help="Output format")

    schedule_parser = subparsers.add_parser("schedule", help="Periodically ingest genres")
    schedule_parser.add_argument("--genres", nargs="+", help="Genres (default: FETCH_GENRES)")
    schedule_parser.add_argument("--provider", choices=providers, default=GOOGLE_BOOKS)
    schedule_parser.add_argument("--target", type=int, help="Items per genre (default: PER_SUBJECT_TARGET)")
    schedule_parser.add_argument("--interval-hours", type=float, help="Hours between sweeps")
    schedule_parser.add_argument("--max-sweeps", type=int, help="Stop after N sweeps")

    seed_parser = subparsers.add_parser("seed", help="Seed an empty DB from Open Library")
    seed_parser.add_argument("--subject", default="fiction")
    seed_parser.add_argument("--limit", type=int, default=100)
    seed_parser.add_argument("--users", type=int, default=15)

    books_parser = subparsers.add_parser("books", help="List stored books")
    books_parser.add_argument("--genre", help="Only this genre")
    books_parser.add_argument("--limit", type=int, help="Limit results")
    books_parser.add_argument("--format", choices=formats, default="table")

    book_parser = subparsers.add_parser("book", help="Show one book")
    book_parser.add_argument("book_id", type=int)
    book_parser.add_argument("--format", choices=formats, default="json")

    subparsers.add_parser("authors", help="List authors")

    reviews_parser = subparsers.add_parser("reviews", help="List reviews of a book")
    reviews_parser.add_argument("book_id", type=int)

    user_parser = subparsers.add_parser("user", help="Add a user (idempotent on email)")
    user_parser.add_argument("name")
    user_parser.add_argument("email")

    review_parser = subparsers.add_parser("review", help="Add a review")
    review_parser.add_argument("book_id", type=int)
    review_parser.add_argument("user_id", type=int)
    review_parser.add_argument("rating", type=int, help="1-5")
    review_parser.add_argument("--comment")

    subparsers.add_parser("stats", help="Show database statistics")

    export_parser = subparsers.add_parser("export", help="Export database data")
    export_parser.add_argument("--format", choices=["json", "csv"], default="json", help="Export format")
    export_parser.add_argument("--output", help="Output file (default: stdout for JSON)")
    export_parser.add_argument("--limit", type=int, help="Limit results")

    return parser


COMMANDS = {
    "fetch": fetch_books,
    "search": search_books,
    "schedule": run_schedule,
    "seed": seed_books,
    "books": list_books,
    "book": show_book,
    "authors": list_authors,
    "reviews": list_reviews,
    "user": add_user,
    "review": add_review,
    "stats": show_stats,
    "export": export_data,
}


def main():
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    config = Config()
    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL, logging.INFO),
        format='%(asctime)s - %(levelname)s - %(message)s'
    )

    command = COMMANDS[args.command]
    try:
        if inspect.iscoroutinefunction(command):
            asyncio.run(command(args, config))
        else:
            command(args, config)

    except KeyboardInterrupt:
        logger.info("\n⚠️  Interrupted by user")
        sys.exit(0)
    except CatalogError as e:
        logger.error(f"❌ Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
