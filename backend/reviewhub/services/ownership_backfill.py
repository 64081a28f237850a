"""One-time assignment of owners to reviews and comments written before ``user_id``.

Such rows only carry a free-text ``author``. A row gets an owner when exactly
one account matches that author, either by display name or by the local part
of its email address. Ambiguous and unmatched rows are left alone.
"""
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from reviewhub.lib.logging import get_logger
from reviewhub.models import Comment, Review, User


logger = get_logger(__name__)


def _owner_index(session: Session) -> dict[str, Optional[str]]:
    """author key -> user id, or None when more than one account claims it."""
    index: dict[str, Optional[str]] = {}

    def claim(key: Optional[str], user_id: str) -> None:
        if not key:
            return
        if key in index and index[key] != user_id:
            index[key] = None
        else:
            index[key] = user_id

    for user in session.execute(select(User)).scalars():
        claim(user.display_name, user.id)
        claim(user.email.split("@")[0], user.id)
    return index


def backfill_owner_ids(session: Session, dry_run: bool = False) -> dict[str, int]:
    """Set ``user_id`` on unowned reviews and comments.

    Returns:
        Rows updated per table, e.g. {"reviews": 3, "comments": 7}
    """
    index = _owner_index(session)
    counts = {}

    for label, model in (("reviews", Review), ("comments", Comment)):
        updated = 0
        for row in session.execute(select(model).where(model.user_id.is_(None))).scalars():
            owner = index.get(row.author)
            if owner is None:
                continue
            row.user_id = owner
            updated += 1
        counts[label] = updated

    if dry_run:
        session.rollback()
    else:
        session.commit()

    logger.info(f"Ownership backfill {'(dry run) ' if dry_run else ''}assigned owners", extra={"counts": counts})
    return counts
