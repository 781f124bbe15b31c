"""Database layer for authors, books, users and reviews."""
import sqlite3
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Optional, List, Dict, Any, Iterable, Iterator, Sequence

import psycopg2
from psycopg2 import pool

from bookfeed.errors import StoreError
from bookfeed.models import Author, Book, BookRecord, InsertResult, Review

logger = logging.getLogger(__name__)

DB_ERRORS = (psycopg2.Error, sqlite3.Error)

ITEM_SAVEPOINT = "bookfeed_item"

SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS authors (
        id {pk},
        name TEXT NOT NULL UNIQUE,
        bio TEXT,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS books (
        id {pk},
        title TEXT NOT NULL CHECK (length(trim(title)) > 0),
        author_id INTEGER REFERENCES authors(id),
        genre TEXT,
        description TEXT,
        rating {real},
        image_url TEXT,
        published_year INTEGER,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        UNIQUE (title, author_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS users (
        id {pk},
        name TEXT NOT NULL,
        email TEXT NOT NULL UNIQUE,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS reviews (
        id {pk},
        book_id INTEGER NOT NULL REFERENCES books(id),
        user_id INTEGER NOT NULL REFERENCES users(id),
        rating INTEGER NOT NULL CHECK (rating BETWEEN 1 AND 5),
        comment TEXT,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_books_title_lower ON books (lower(title))",
    "CREATE INDEX IF NOT EXISTS idx_books_genre ON books (genre)",
    "CREATE INDEX IF NOT EXISTS idx_reviews_book ON reviews (book_id)",
]

POSTGRES_TYPES = {"pk": "SERIAL PRIMARY KEY", "real": "DOUBLE PRECISION"}
SQLITE_TYPES = {"pk": "INTEGER PRIMARY KEY AUTOINCREMENT", "real": "REAL"}

BOOK_SELECT = """
    SELECT b.id, b.title, b.author_id, a.name, b.genre, b.description,
           b.rating, b.image_url, b.published_year
    FROM books b
    LEFT JOIN authors a ON a.id = b.author_id
"""

BOOK_ORDER = "ORDER BY b.rating IS NULL, b.rating DESC, b.id DESC"


class SqliteCursorAdapter:
    """Run psycopg2-style ``%s`` statements on a sqlite3 cursor."""

    def __init__(self, cursor):
        self.cursor = cursor

    def execute(self, query, params=None):
        query = query.replace("%s", "?")
        if params is None:
            self.cursor.execute(query)
        else:
            self.cursor.execute(query, tuple(params))
        return self

    def __getattr__(self, name):
        return getattr(self.cursor, name)


class SqliteConnectionAdapter:
    """Explicit BEGIN/COMMIT on an autocommit sqlite3 connection."""

    def __init__(self, conn):
        self.conn = conn

    def begin(self):
        self.conn.execute("BEGIN")

    def cursor(self):
        return SqliteCursorAdapter(self.conn.cursor())

    def commit(self):
        if self.conn.in_transaction:
            self.conn.execute("COMMIT")

    def rollback(self):
        if self.conn.in_transaction:
            self.conn.execute("ROLLBACK")


class SqliteConnectionPool:
    """Single shared SQLite connection behind the psycopg2 pool interface."""

    def __init__(self, db_path: str):
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(db_path, isolation_level=None)
        conn.execute("PRAGMA foreign_keys = ON")
        if db_path != ":memory:":
            conn.execute("PRAGMA journal_mode = WAL")
        self.connection = SqliteConnectionAdapter(conn)

    def getconn(self):
        return self.connection

    def putconn(self, conn):
        pass

    def closeall(self):
        self.connection.conn.close()


class Database:
    """Relational store with connection pooling (PostgreSQL, or SQLite locally)."""

    def __init__(
        self,
        connection_string: Optional[str] = None,
        use_sqlite: bool = False,
        sqlite_path: str = ":memory:",
        min_conn: int = 1,
        max_conn: int = 10
    ):
        """
        Initialize database connection pool.

        Args:
            connection_string: PostgreSQL connection string
            use_sqlite: Use a local SQLite file instead of PostgreSQL
            sqlite_path: SQLite database path (":memory:" for a scratch store)
            min_conn: Minimum connections in pool
            max_conn: Maximum connections in pool
        """
        self.use_sqlite = use_sqlite
        try:
            if use_sqlite:
                self.connection_pool = SqliteConnectionPool(sqlite_path)
            else:
                if not connection_string:
                    raise StoreError("connection_string is required for PostgreSQL")
                self.connection_pool = psycopg2.pool.SimpleConnectionPool(
                    min_conn,
                    max_conn,
                    connection_string
                )
        except DB_ERRORS as e:
            raise StoreError(f"Failed to open database: {e}") from e

        logger.info(f"Database connection pool created ({'sqlite' if use_sqlite else 'postgres'})")

    def init_schema(self):
        """Create database tables if they don't exist."""
        types = SQLITE_TYPES if self.use_sqlite else POSTGRES_TYPES
        with self.transaction() as cur:
            for statement in SCHEMA_STATEMENTS:
                self._execute(cur, statement.format(**types))
        logger.info("Database schema initialized successfully")

    # Transactions

    @contextmanager
    def transaction(self) -> Iterator[Any]:
        """
        Run a unit of work in a single transaction.

        Yields a cursor. Everything executed on it commits together when the
        block exits normally. Any exception rolls the whole unit back and is
        re-raised; driver errors are re-raised as StoreError.
        """
        conn = self.connection_pool.getconn()
        try:
            if self.use_sqlite:
                conn.begin()
            cur = conn.cursor()
            try:
                try:
                    yield cur
                finally:
                    cur.close()
                conn.commit()
            except BaseException:
                conn.rollback()
                raise
        except DB_ERRORS as e:
            raise StoreError(str(e)) from e
        finally:
            self.connection_pool.putconn(conn)

    @contextmanager
    def savepoint(self, cur) -> Iterator[Any]:
        """
        Nested unit inside an open transaction.

        On error only the writes made since the savepoint are undone; the
        enclosing transaction stays usable.
        """
        self._execute(cur, f"SAVEPOINT {ITEM_SAVEPOINT}")
        try:
            yield cur
        except BaseException as e:
            self._execute(cur, f"ROLLBACK TO SAVEPOINT {ITEM_SAVEPOINT}")
            if isinstance(e, DB_ERRORS):
                raise StoreError(str(e)) from e
            raise
        else:
            self._execute(cur, f"RELEASE SAVEPOINT {ITEM_SAVEPOINT}")

    @contextmanager
    def _cursor(self, cur=None) -> Iterator[Any]:
        if cur is not None:
            yield cur
        else:
            with self.transaction() as new_cur:
                yield new_cur

    @staticmethod
    def _execute(cur, query: str, params: Optional[Sequence[Any]] = None):
        try:
            cur.execute(query, params)
        except DB_ERRORS as e:
            raise StoreError(str(e)) from e
        return cur

    # Authors

    def upsert_author(self, name: str, cur=None) -> int:
        """
        Return the id of the author with this name, creating it if needed.

        Insert-or-ignore on the unique name, then re-read the id, so repeated
        calls never create a second row.
        """
        if not name or not name.strip():
            raise StoreError("author name is required")
        with self._cursor(cur) as c:
            self._execute(
                c,
                "INSERT INTO authors (name) VALUES (%s) ON CONFLICT (name) DO NOTHING",
                (name,)
            )
            self._execute(c, "SELECT id FROM authors WHERE name = %s", (name,))
            row = c.fetchone()
        if row is None:
            raise StoreError(f"author {name!r} missing after insert")
        return row[0]

    def list_authors(self) -> List[Author]:
        with self._cursor() as cur:
            self._execute(cur, "SELECT id, name, bio FROM authors ORDER BY name ASC")
            rows = cur.fetchall()
        return [Author(*row) for row in rows]

    # Books

    def insert_book_if_absent(self, record: BookRecord, author_id: Optional[int], cur=None) -> InsertResult:
        """
        Insert a book unless one with the same (title, author_id) exists.

        Args:
            record: Normalized book record
            author_id: Owning author, or None for an author-less row
            cur: Cursor of an open transaction (optional)

        Returns:
            InsertResult with inserted=False for duplicates
        """
        values = (
            record.title, author_id, record.genre, record.description,
            record.rating, record.image_url, record.published_year
        )
        with self._cursor(cur) as c:
            if author_id is not None:
                self._execute(c, """
                    INSERT INTO books (
                        title, author_id, genre, description, rating, image_url, published_year
                    ) VALUES (%s, %s, %s, %s, %s, %s, %s)
                    ON CONFLICT (title, author_id) DO NOTHING
                """, values)
                inserted = c.rowcount == 1
                self._execute(
                    c,
                    "SELECT id FROM books WHERE title = %s AND author_id = %s",
                    (record.title, author_id)
                )
            else:
                # NULL never conflicts in a UNIQUE constraint
                self._execute(c, """
                    INSERT INTO books (
                        title, author_id, genre, description, rating, image_url, published_year
                    )
                    SELECT %s, %s, %s, %s, %s, %s, %s
                    WHERE NOT EXISTS (
                        SELECT 1 FROM books WHERE title = %s AND author_id IS NULL
                    )
                """, values + (record.title,))
                inserted = c.rowcount == 1
                self._execute(
                    c,
                    "SELECT id FROM books WHERE title = %s AND author_id IS NULL ORDER BY id LIMIT 1",
                    (record.title,)
                )
            row = c.fetchone()
        return InsertResult(inserted=inserted, id=row[0] if row else None)

    def insert_books_by_title(self, records: Iterable[BookRecord], cur=None) -> int:
        """
        Insert records without an author reference, skipping any title that
        is already stored (whatever its author).

        Returns:
            Number of rows inserted
        """
        inserted = 0
        with self._cursor(cur) as c:
            for record in records:
                self._execute(c, """
                    INSERT INTO books (
                        title, genre, description, rating, image_url, published_year
                    )
                    SELECT %s, %s, %s, %s, %s, %s
                    WHERE NOT EXISTS (SELECT 1 FROM books WHERE title = %s)
                """, (
                    record.title, record.genre, record.description, record.rating,
                    record.image_url, record.published_year, record.title
                ))
                inserted += c.rowcount
        return inserted

    def count_books(self) -> int:
        with self._cursor() as cur:
            self._execute(cur, "SELECT COUNT(*) FROM books")
            return cur.fetchone()[0]

    def find_book_by_id(self, book_id: int) -> Optional[Book]:
        """Get a book by ID."""
        with self._cursor() as cur:
            self._execute(cur, BOOK_SELECT + " WHERE b.id = %s", (book_id,))
            row = cur.fetchone()
        return Book(*row) if row else None

    def find_books_by_title_substring(self, query: str) -> List[Book]:
        """
        Case-insensitive substring search on title.

        Args:
            query: Search text

        Returns:
            List of Book objects, newest first
        """
        pattern = f"%{query.strip().lower()}%"
        return self._fetch_books(
            BOOK_SELECT + " WHERE lower(b.title) LIKE %s ORDER BY b.id DESC",
            (pattern,)
        )

    def find_books_by_titles(self, titles: Iterable[str]) -> List[Book]:
        """Case-insensitive exact match on any of the given titles."""
        lowered = sorted({t.lower() for t in titles})
        if not lowered:
            return []
        placeholders = ", ".join(["%s"] * len(lowered))
        return self._fetch_books(
            BOOK_SELECT + f" WHERE lower(b.title) IN ({placeholders}) ORDER BY b.id DESC",
            lowered
        )

    def list_books_by_genre(self, genre: str) -> List[Book]:
        return self._fetch_books(
            BOOK_SELECT + f" WHERE lower(b.genre) = %s {BOOK_ORDER}",
            (genre.strip().lower(),)
        )

    def list_books(self, limit: Optional[int] = None) -> List[Book]:
        """All books, best rated first (unrated last)."""
        if limit is not None:
            return self._fetch_books(BOOK_SELECT + f" {BOOK_ORDER} LIMIT %s", (limit,))
        return self._fetch_books(BOOK_SELECT + f" {BOOK_ORDER}")

    def _fetch_books(self, query: str, params: Optional[Sequence[Any]] = None) -> List[Book]:
        with self._cursor() as cur:
            self._execute(cur, query, params)
            rows = cur.fetchall()
        return [Book(*row) for row in rows]

    # Users and reviews

    def insert_user(self, name: str, email: str, cur=None) -> int:
        """Create a user (idempotent on email) and return its id."""
        with self._cursor(cur) as c:
            self._execute(
                c,
                "INSERT INTO users (name, email) VALUES (%s, %s) ON CONFLICT (email) DO NOTHING",
                (name, email)
            )
            self._execute(c, "SELECT id FROM users WHERE email = %s", (email,))
            return c.fetchone()[0]

    def insert_review(self, book_id: int, user_id: int, rating: int, comment: Optional[str] = None) -> int:
        """
        Store a user review.

        Raises:
            StoreError: rating outside 1-5, or unknown book/user
        """
        with self._cursor() as cur:
            self._execute(cur, """
                INSERT INTO reviews (book_id, user_id, rating, comment)
                VALUES (%s, %s, %s, %s)
                RETURNING id
            """, (book_id, user_id, rating, comment or None))
            review_id = cur.fetchall()[0][0]
        logger.info(f"Stored review {review_id} for book {book_id}")
        return review_id

    def list_reviews(self, book_id: int) -> List[Review]:
        with self._cursor() as cur:
            self._execute(cur, """
                SELECT id, book_id, user_id, rating, comment
                FROM reviews WHERE book_id = %s
                ORDER BY id DESC
            """, (book_id,))
            rows = cur.fetchall()
        return [Review(*row) for row in rows]

    def get_stats(self) -> Dict[str, Any]:
        """Get database statistics."""
        stats = {}
        with self._cursor() as cur:
            for table in ("authors", "books", "users", "reviews"):
                self._execute(cur, f"SELECT COUNT(*) FROM {table}")
                stats[f"total_{table}"] = cur.fetchone()[0]
        return stats

    def close(self):
        """Close all connections in the pool."""
        if self.connection_pool:
            self.connection_pool.closeall()
            logger.info("Database connection pool closed")

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
