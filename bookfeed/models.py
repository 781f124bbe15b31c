"""Data models for books, authors and reviews."""
from dataclasses import dataclass
from typing import Optional


UNKNOWN_AUTHOR = "Unknown Author"


@dataclass
class BookRecord:
    """Normalized upstream record, ready to be stored."""
    title: str
    author_name: Optional[str] = None
    genre: Optional[str] = None
    description: Optional[str] = None
    rating: Optional[float] = None
    image_url: Optional[str] = None
    published_year: Optional[int] = None


@dataclass
class Book:
    """Book row as stored in the database."""
    id: int
    title: str
    author_id: Optional[int]
    author_name: Optional[str]
    genre: Optional[str]
    description: Optional[str]
    rating: Optional[float]
    image_url: Optional[str]
    published_year: Optional[int]

    @property
    def author_str(self) -> str:
        """Author name for display."""
        return self.author_name or UNKNOWN_AUTHOR

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "author_id": self.author_id,
            "author_name": self.author_name,
            "genre": self.genre,
            "description": self.description,
            "rating": self.rating,
            "image_url": self.image_url,
            "published_year": self.published_year,
        }


@dataclass
class Author:
    id: int
    name: str
    bio: Optional[str] = None


@dataclass
class Review:
    id: int
    book_id: int
    user_id: int
    rating: int
    comment: Optional[str] = None


@dataclass
class InsertResult:
    """Outcome of an insert-if-absent call."""
    inserted: bool
    id: Optional[int]
