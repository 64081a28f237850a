"""Assign owners to legacy reviews and comments.

Usage:
    python backfill_owners.py            # apply
    python backfill_owners.py --dry-run  # report only
"""
import argparse

from reviewhub.lib.db import get_db_context, init_db
from reviewhub.services.ownership_backfill import backfill_owner_ids


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--dry-run", action="store_true", help="Report matches without writing them")
    args = parser.parse_args()

    init_db()
    with get_db_context() as session:
        counts = backfill_owner_ids(session, dry_run=args.dry_run)

    prefix = "Would assign" if args.dry_run else "Assigned"
    print(f"{prefix} owners: {counts['reviews']} reviews, {counts['comments']} comments")


if __name__ == "__main__":
    main()
