"""Tests for the database layer (SQLite backend)."""
import pytest

from bookfeed.errors import StoreError
from bookfeed.models import BookRecord


def test_upsert_author_is_idempotent(db):
    first = db.upsert_author("Frank Herbert")
    second = db.upsert_author("Frank Herbert")
    other = db.upsert_author("Ursula K. Le Guin")

    assert first == second
    assert other != first
    assert [a.name for a in db.list_authors()] == ["Frank Herbert", "Ursula K. Le Guin"]


def test_upsert_author_is_case_sensitive(db):
    assert db.upsert_author("bell hooks") != db.upsert_author("Bell Hooks")


def test_upsert_author_requires_name(db):
    with pytest.raises(StoreError):
        db.upsert_author("  ")


def test_insert_book_if_absent_dedups_on_title_and_author(db):
    author_id = db.upsert_author("Frank Herbert")
    record = BookRecord(title="Dune", author_name="Frank Herbert", genre="science", rating=4.5)

    first = db.insert_book_if_absent(record, author_id)
    second = db.insert_book_if_absent(record, author_id)

    assert first.inserted is True
    assert second.inserted is False
    assert first.id == second.id
    assert db.count_books() == 1


def test_same_title_different_author_is_a_new_book(db):
    a = db.upsert_author("Author A")
    b = db.upsert_author("Author B")

    assert db.insert_book_if_absent(BookRecord(title="Collected Poems"), a).inserted
    assert db.insert_book_if_absent(BookRecord(title="Collected Poems"), b).inserted
    assert db.count_books() == 2


def test_null_fields_round_trip(db):
    result = db.insert_book_if_absent(BookRecord(title="Untitled Draft"), None)

    book = db.find_book_by_id(result.id)

    assert book.title == "Untitled Draft"
    assert book.author_id is None
    assert book.author_name is None
    assert book.genre is None
    assert book.description is None
    assert book.rating is None
    assert book.image_url is None
    assert book.published_year is None


def test_author_less_books_dedup_on_title(db):
    first = db.insert_book_if_absent(BookRecord(title="Anonymous"), None)
    second = db.insert_book_if_absent(BookRecord(title="Anonymous"), None)

    assert first.inserted and not second.inserted
    assert first.id == second.id


def test_find_book_by_id_includes_author_name(db):
    author_id = db.upsert_author("Frank Herbert")
    result = db.insert_book_if_absent(BookRecord(title="Dune", published_year=1965), author_id)

    book = db.find_book_by_id(result.id)

    assert book.author_name == "Frank Herbert"
    assert book.published_year == 1965
    assert db.find_book_by_id(9999) is None


def test_blank_title_is_a_store_error(db):
    with pytest.raises(StoreError):
        db.insert_book_if_absent(BookRecord(title="   "), db.upsert_author("Someone"))


def test_transaction_rolls_back_everything_on_error(db):
    with pytest.raises(RuntimeError):
        with db.transaction() as cur:
            author_id = db.upsert_author("Frank Herbert", cur)
            db.insert_book_if_absent(BookRecord(title="Dune"), author_id, cur)
            raise RuntimeError("boom")

    assert db.count_books() == 0
    assert db.list_authors() == []


def test_transaction_commits_all_writes(db):
    with db.transaction() as cur:
        author_id = db.upsert_author("Frank Herbert", cur)
        db.insert_book_if_absent(BookRecord(title="Dune"), author_id, cur)
        db.insert_book_if_absent(BookRecord(title="Dune Messiah"), author_id, cur)

    assert db.count_books() == 2


def test_savepoint_undoes_only_its_own_writes(db):
    with db.transaction() as cur:
        author_id = db.upsert_author("Frank Herbert", cur)
        db.insert_book_if_absent(BookRecord(title="Dune"), author_id, cur)
        with pytest.raises(StoreError):
            with db.savepoint(cur):
                db.insert_book_if_absent(BookRecord(title="Dune Messiah"), author_id, cur)
                db.insert_book_if_absent(BookRecord(title=" "), author_id, cur)
        db.insert_book_if_absent(BookRecord(title="Children of Dune"), author_id, cur)

    titles = sorted(b.title for b in db.list_books())
    assert titles == ["Children of Dune", "Dune"]


def test_find_books_by_title_substring_is_case_insensitive(db):
    author_id = db.upsert_author("Frank Herbert")
    db.insert_book_if_absent(BookRecord(title="Dune"), author_id)
    db.insert_book_if_absent(BookRecord(title="Children of Dune"), author_id)
    db.insert_book_if_absent(BookRecord(title="Emma"), author_id)

    results = db.find_books_by_title_substring("DUNE")

    assert sorted(b.title for b in results) == ["Children of Dune", "Dune"]
    assert db.find_books_by_title_substring("nothing here") == []


def test_find_books_by_titles_exact_match(db):
    author_id = db.upsert_author("Frank Herbert")
    db.insert_book_if_absent(BookRecord(title="Dune"), author_id)
    db.insert_book_if_absent(BookRecord(title="Children of Dune"), author_id)

    results = db.find_books_by_titles(["dune"])

    assert [b.title for b in results] == ["Dune"]
    assert db.find_books_by_titles([]) == []


def test_list_books_by_genre(db):
    author_id = db.upsert_author("Someone")
    db.insert_book_if_absent(BookRecord(title="A", genre="Fantasy"), author_id)
    db.insert_book_if_absent(BookRecord(title="B", genre="fantasy"), author_id)
    db.insert_book_if_absent(BookRecord(title="C", genre="history"), author_id)

    assert sorted(b.title for b in db.list_books_by_genre(" FANTASY ")) == ["A", "B"]


def test_list_books_orders_by_rating_with_unrated_last(db):
    author_id = db.upsert_author("Someone")
    db.insert_book_if_absent(BookRecord(title="Unrated"), author_id)
    db.insert_book_if_absent(BookRecord(title="Good", rating=4.0), author_id)
    db.insert_book_if_absent(BookRecord(title="Best", rating=4.8), author_id)

    assert [b.title for b in db.list_books()] == ["Best", "Good", "Unrated"]
    assert [b.title for b in db.list_books(limit=1)] == ["Best"]


def test_insert_books_by_title_skips_known_titles(db):
    author_id = db.upsert_author("Frank Herbert")
    db.insert_book_if_absent(BookRecord(title="Dune"), author_id)

    inserted = db.insert_books_by_title([
        BookRecord(title="Dune", author_name="Frank Herbert"),
        BookRecord(title="Hyperion", author_name="Dan Simmons", genre="Fiction"),
        BookRecord(title="Hyperion", author_name="Dan Simmons"),
    ])

    assert inserted == 1
    assert db.count_books() == 2
    hyperion = db.find_books_by_titles(["hyperion"])[0]
    assert hyperion.author_id is None
    assert hyperion.genre == "Fiction"


def test_insert_user_is_idempotent_on_email(db):
    assert db.insert_user("User 1", "user1@example.com") == db.insert_user("User 1", "user1@example.com")


def test_reviews(db):
    book_id = db.insert_book_if_absent(BookRecord(title="Dune"), db.upsert_author("Frank Herbert")).id
    user_id = db.insert_user("User 1", "user1@example.com")

    review_id = db.insert_review(book_id, user_id, 5, "Classic")

    reviews = db.list_reviews(book_id)
    assert len(reviews) == 1
    assert reviews[0].id == review_id
    assert reviews[0].rating == 5
    assert reviews[0].comment == "Classic"


@pytest.mark.parametrize("rating", [0, 6])
def test_review_rating_out_of_range(db, rating):
    book_id = db.insert_book_if_absent(BookRecord(title="Dune"), db.upsert_author("Frank Herbert")).id
    user_id = db.insert_user("User 1", "user1@example.com")

    with pytest.raises(StoreError):
        db.insert_review(book_id, user_id, rating)

    assert db.list_reviews(book_id) == []


def test_review_for_unknown_book(db):
    user_id = db.insert_user("User 1", "user1@example.com")

    with pytest.raises(StoreError):
        db.insert_review(404, user_id, 3)


def test_get_stats(db):
    db.insert_book_if_absent(BookRecord(title="Dune"), db.upsert_author("Frank Herbert"))
    db.insert_user("User 1", "user1@example.com")

    assert db.get_stats() == {
        "total_authors": 1,
        "total_books": 1,
        "total_users": 1,
        "total_reviews": 0,
    }


def test_list_books_limit_zero_returns_nothing(db):
    db.insert_book_if_absent(BookRecord(title="Dune"), db.upsert_author("Frank Herbert"))

    assert db.list_books(limit=0) == []
