"""Configuration management."""
import os
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

DEFAULT_GENRES = (
    "fiction,romance,fantasy,history,science,mystery,thriller,biography,children,self-help"
)


class Config:
    """Application configuration."""

    # Database
    DB_HOST = os.getenv("DB_HOST", "localhost")
    DB_PORT = os.getenv("DB_PORT", "5432")
    DB_NAME = os.getenv("DB_NAME", "booksdb")
    DB_USER = os.getenv("DB_USER", "postgres")
    DB_PASSWORD = os.getenv("DB_PASSWORD", "")
    USE_SQLITE = os.getenv("USE_SQLITE", "0") == "1"
    SQLITE_DB_PATH = os.getenv("SQLITE_DB_PATH", "data/books.db")

    @property
    def DATABASE_URL(self):
        """PostgreSQL connection string (DATABASE_URL wins if set)."""
        url = os.getenv("DATABASE_URL")
        if url:
            return url
        return f"postgresql://{self.DB_USER}:{self.DB_PASSWORD}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"

    # API
    GOOGLE_BOOKS_API_KEY = os.getenv("GOOGLE_BOOKS_API_KEY")

    # HTTP
    DEFAULT_TIMEOUT = int(os.getenv("DEFAULT_TIMEOUT", "10"))
    DEFAULT_MAX_RETRIES = int(os.getenv("DEFAULT_MAX_RETRIES", "3"))
    MAX_CONCURRENT_REQUESTS = int(os.getenv("MAX_CONCURRENT_REQUESTS", "5"))

    # Search
    SEARCH_CACHE_TTL = int(os.getenv("SEARCH_CACHE_TTL", "300"))

    # Ingestion
    FETCH_GENRES = [g.strip() for g in os.getenv("FETCH_GENRES", DEFAULT_GENRES).split(",") if g.strip()]
    PER_SUBJECT_TARGET = int(os.getenv("PER_SUBJECT_TARGET", "200"))
    FETCH_INTERVAL_HOURS = float(os.getenv("FETCH_INTERVAL_HOURS", "24"))

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
