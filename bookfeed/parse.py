"""Parse and normalize Google Books and Open Library responses."""
import logging
from typing import Dict, Any, List, Optional

from bookfeed.errors import InvalidRecord
from bookfeed.models import BookRecord, UNKNOWN_AUTHOR

logger = logging.getLogger(__name__)

GOOGLE_BOOKS = "google_books"
OPEN_LIBRARY = "open_library"

# Largest first
GOOGLE_IMAGE_SIZES = ("extraLarge", "large", "medium", "small", "thumbnail", "smallThumbnail")

OPEN_LIBRARY_COVER_URL = "https://covers.openlibrary.org/b/{kind}/{value}-L.jpg"


def _clean_str(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def parse_year(value: Any) -> Optional[int]:
    """
    Extract a year from a date-like value.

    Only the first four characters are considered, so "1965-06-01",
    "1965" and 1965 all give 1965. Anything non-numeric gives None.
    """
    if value is None or isinstance(value, bool):
        return None
    head = str(value).strip()[:4]
    if len(head) != 4 or not head.isdigit():
        return None
    return int(head)


def parse_rating(value: Any) -> Optional[float]:
    """Accept a provider rating only if it is already a number."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _first_author(authors: Any) -> str:
    if isinstance(authors, list) and authors:
        first = authors[0]
        # Open Library lists authors as {"key": ..., "name": ...}
        if isinstance(first, dict):
            first = first.get("name")
        name = _clean_str(first)
        if name:
            return name
    return UNKNOWN_AUTHOR


def _description(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        value = value.get("value")
    return _clean_str(value)


def _google_image(image_links: Any) -> Optional[str]:
    if not isinstance(image_links, dict):
        return None
    for size in GOOGLE_IMAGE_SIZES:
        url = _clean_str(image_links.get(size))
        if url:
            return url
    return None


def _open_library_cover(work: Dict[str, Any]) -> Optional[str]:
    cover_id = work.get("cover_id") or work.get("cover_i")
    if cover_id:
        return OPEN_LIBRARY_COVER_URL.format(kind="id", value=cover_id)
    edition_key = _clean_str(work.get("cover_edition_key"))
    if edition_key:
        return OPEN_LIBRARY_COVER_URL.format(kind="olid", value=edition_key)
    return None


def _require_title(value: Any) -> str:
    title = _clean_str(value)
    if not title:
        raise InvalidRecord("item has no title")
    return title


def parse_google_item(item: Dict[str, Any], genre: Optional[str] = None) -> BookRecord:
    """
    Normalize a single volume from the Google Books API.

    Args:
        item: Single element of the response's ``items`` list
        genre: Subject being ingested; falls back to the first category

    Returns:
        BookRecord

    Raises:
        InvalidRecord: if the volume has no usable title
    """
    volume_info = item.get("volumeInfo") or {}
    if not isinstance(volume_info, dict):
        raise InvalidRecord(f"volumeInfo is a {type(volume_info).__name__}, expected an object")
    title = _require_title(volume_info.get("title"))

    if genre is None:
        categories = volume_info.get("categories") or []
        genre = _clean_str(categories[0]) if isinstance(categories, list) and categories else None

    return BookRecord(
        title=title,
        author_name=_first_author(volume_info.get("authors")),
        genre=genre,
        description=_description(volume_info.get("description")),
        rating=parse_rating(volume_info.get("averageRating")),
        image_url=_google_image(volume_info.get("imageLinks")),
        published_year=parse_year(volume_info.get("publishedDate")),
    )


def parse_open_library_work(work: Dict[str, Any], genre: Optional[str] = None) -> BookRecord:
    """Normalize a single work from an Open Library subjects response."""
    title = _require_title(work.get("title"))

    year = work.get("first_publish_year")
    if year is None:
        year = work.get("first_publish_date")

    rating = parse_rating(work.get("rating"))
    if rating is None:
        rating = parse_rating(work.get("average_rating"))

    return BookRecord(
        title=title,
        author_name=_first_author(work.get("authors")),
        genre=genre,
        description=_description(work.get("description")),
        rating=rating,
        image_url=_open_library_cover(work),
        published_year=parse_year(year),
    )


def normalize_item(item: Any, provider: str, genre: Optional[str] = None) -> BookRecord:
    """
    Normalize a raw item from either provider.

    Raises:
        InvalidRecord: if the item is malformed or has no title
        ValueError: if the provider is unknown
    """
    if not isinstance(item, dict):
        raise InvalidRecord(f"expected an object, got {type(item).__name__}")
    if provider == GOOGLE_BOOKS:
        return parse_google_item(item, genre)
    if provider == OPEN_LIBRARY:
        return parse_open_library_work(item, genre)
    raise ValueError(f"Unknown provider: {provider}")


def items_from_response(response_json: Dict[str, Any], provider: str) -> List[Any]:
    """Return the raw item list of a provider response (empty if missing)."""
    key = "works" if provider == OPEN_LIBRARY else "items"
    items = (response_json or {}).get(key)
    return items if isinstance(items, list) else []


def parse_items(items: List[Any], provider: str, genre: Optional[str] = None) -> List[BookRecord]:
    """
    Normalize a list of raw items, skipping the invalid ones.

    Args:
        items: Raw items from one response
        provider: Provider name
        genre: Optional genre override

    Returns:
        List of BookRecord (empty if nothing was usable)
    """
    records = []
    for item in items:
        try:
            records.append(normalize_item(item, provider, genre))
        except InvalidRecord as e:
            logger.warning(f"Skipping {provider} item: {e}")
    return records
