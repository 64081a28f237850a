"""
Unit tests for assigning owners to legacy reviews and comments.
"""
from datetime import datetime, timezone

import pytest

from reviewhub.models import Comment, Review, User
from reviewhub.services.ownership_backfill import backfill_owner_ids


def add_user(session, email, display_name):
    user = User(email=email, password_hash="x", display_name=display_name)
    session.add(user)
    session.flush()
    return user


def add_review(session, author, user_id=None):
    review = Review(
        title="t", author=author, content="c", rating=4, date="2024-01-01",
        user_id=user_id, created_at=datetime.now(timezone.utc),
    )
    session.add(review)
    session.flush()
    return review


@pytest.mark.unit
def test_backfill_assigns_unique_matches(db_session):
    """Test backfill assigns unique matches."""
    alice = add_user(db_session, "alice@example.com", "Alice")
    bob = add_user(db_session, "bob@example.com", "Bobby")
    by_name = add_review(db_session, "Alice")
    by_prefix = add_review(db_session, "bob")
    unknown = add_review(db_session, "Mallory")
    db_session.add(Comment(review_id=by_name.id, author="Bobby", content="hi"))
    db_session.commit()

    counts = backfill_owner_ids(db_session)

    assert counts == {"reviews": 2, "comments": 1}
    db_session.refresh(by_name)
    db_session.refresh(by_prefix)
    db_session.refresh(unknown)
    assert by_name.user_id == alice.id
    assert by_prefix.user_id == bob.id
    assert unknown.user_id is None


@pytest.mark.unit
def test_backfill_skips_ambiguous_authors(db_session):
    """Test backfill skips ambiguous authors."""
    add_user(db_session, "sam@example.com", "Sam")
    add_user(db_session, "sam.other@example.com", "Sam")
    review = add_review(db_session, "Sam")
    db_session.commit()

    assert backfill_owner_ids(db_session) == {"reviews": 0, "comments": 0}
    db_session.refresh(review)
    assert review.user_id is None


@pytest.mark.unit
def test_backfill_never_overwrites_existing_owner(db_session):
    """Test backfill never overwrites existing owner."""
    add_user(db_session, "alice@example.com", "Alice")
    review = add_review(db_session, "Alice", user_id="someone-else")
    db_session.commit()

    backfill_owner_ids(db_session)

    db_session.refresh(review)
    assert review.user_id == "someone-else"


@pytest.mark.unit
def test_backfill_dry_run_writes_nothing(db_session):
    """Test backfill dry run writes nothing."""
    add_user(db_session, "alice@example.com", "Alice")
    review = add_review(db_session, "Alice")
    db_session.commit()

    assert backfill_owner_ids(db_session, dry_run=True) == {"reviews": 1, "comments": 0}
    db_session.refresh(review)
    assert review.user_id is None
