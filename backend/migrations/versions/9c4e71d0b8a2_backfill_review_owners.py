"""backfill_review_owners

Assigns user_id to reviews and comments that only carry an author name,
where exactly one account matches that name.

Revision ID: 9c4e71d0b8a2
Revises: 5b1f0c2a7d34
Create Date: 2026-10-19 10:03:17.502611

"""
from typing import Sequence, Union

from alembic import op
from sqlalchemy.orm import Session

from reviewhub.services.ownership_backfill import backfill_owner_ids


# revision identifiers, used by Alembic.
revision: str = '9c4e71d0b8a2'
down_revision: Union[str, Sequence[str], None] = '5b1f0c2a7d34'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade data."""
    session = Session(bind=op.get_bind())
    backfill_owner_ids(session)


def downgrade() -> None:
    """Ownership assignments are kept; there is no record of which rows were backfilled."""
    pass
