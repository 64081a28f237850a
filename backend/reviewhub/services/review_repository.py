"""Reviews and comments: remote first, device-local fallback.

Storage locations:

- remote reviews and their comments live in the ``reviews`` / ``comments``
  tables;
- reviews created while the remote backend was unavailable live in the
  ``local_reviews`` collection with their comments embedded;
- comments written against a *remote* review while it was unavailable live
  in the ``local_comments`` side table keyed by review id, so they stay
  visible on this device next to the remote review.
"""
from typing import Optional

from pydantic import ValidationError

from reviewhub.lib.logging import get_logger
from reviewhub.lib.metrics import get_metrics_collector
from reviewhub.services.local_store import (
    COMMENTS_NAMESPACE,
    REVIEWS_NAMESPACE,
    LocalStore,
    new_local_id,
)
from reviewhub.services.records import (
    RECORD_SCHEMA_VERSION,
    Comment,
    CommentDraft,
    CommentResult,
    DeleteResult,
    Review,
    ReviewDraft,
    ReviewPage,
    ReviewPatch,
    Source,
    WriteResult,
    is_local_id,
    normalize_comment,
    normalize_review,
    today,
    utcnow,
)
from reviewhub.services.remote_backend import (
    RemoteBackend,
    RemoteBackendError,
    RemoteUnavailableError,
)


logger = get_logger(__name__)


REVIEWS_TABLE = "reviews"
COMMENTS_TABLE = "comments"

PLACEHOLDER_TITLE = "Could not load review"
PLACEHOLDER_CONTENT = "This review could not be loaded because the server is unreachable."


class ReviewRepository:
    """Remote-first persistence for reviews and their comments."""

    def __init__(self, backend: Optional[RemoteBackend], local_store: LocalStore):
        self.backend = backend
        self.local_store = local_store
        self.metrics = get_metrics_collector()

    # ----- internals -----

    def _remote_ready(self) -> bool:
        return self.backend is not None and self.backend.is_online()

    def _remote_failed(self, entity: str, operation: str, error: Optional[Exception] = None) -> None:
        kind = "rejected" if error is not None and not isinstance(error, RemoteUnavailableError) else "unavailable"
        self.metrics.increment_remote_errors(entity, operation, kind)
        logger.warning(
            f"Remote {operation} of {entity} failed ({kind})",
            extra={"entity": entity, "operation": operation, "error": str(error) if error else None},
        )

    def _fell_back(self, entity: str, operation: str) -> None:
        self.metrics.increment_fallback(entity, operation)
        logger.warning(f"Serving {operation} of {entity} from local storage")

    def _local_reviews(self) -> list[Review]:
        reviews = []
        for record in self.local_store.load_all(REVIEWS_NAMESPACE):
            try:
                reviews.append(normalize_review(record, Source.LOCAL))
            except ValidationError as e:
                logger.warning(f"Skipping unreadable local review {record.get('id')}: {e}")
        return reviews

    def _find_local_review(self, review_id: str) -> Optional[Review]:
        return next((review for review in self._local_reviews() if review.id == review_id), None)

    def _side_table_comments(self, review_id: str) -> list[Comment]:
        comments = []
        for record in self.local_store.load_map(COMMENTS_NAMESPACE).get(review_id, []):
            try:
                comments.append(normalize_comment(record, Source.LOCAL, review_id=review_id))
            except ValidationError as e:
                logger.warning(f"Skipping unreadable local comment {record.get('id')}: {e}")
        return comments

    @staticmethod
    def _placeholder(review_id: str, comments: list[Comment]) -> Review:
        return Review(
            id=review_id,
            title=PLACEHOLDER_TITLE,
            author="Unknown",
            content=PLACEHOLDER_CONTENT,
            comments=comments,
            comments_count=len(comments),
            source=Source.LOCAL,
            has_local_comments=True,
            is_placeholder=True,
        )

    # ----- reviews -----

    async def add_review(self, draft: ReviewDraft) -> WriteResult:
        """Create a review remotely, or on this device when that fails."""
        now = utcnow()
        values = {**draft.model_dump(), "date": today(), "created_at": now}

        if self._remote_ready():
            try:
                row = await self.backend.insert(REVIEWS_TABLE, values)
                logger.info(f"Review {row['id']} created remotely")
                return WriteResult(success=True, id=row["id"], source=Source.REMOTE)
            except RemoteBackendError as e:
                self._remote_failed("review", "create", e)
        else:
            self._remote_failed("review", "create")

        self._fell_back("review", "create")
        local_id = self.local_store.append_one(
            REVIEWS_NAMESPACE,
            {
                **values,
                "created_at": now.isoformat(),
                "comments": [],
                "schema_version": RECORD_SCHEMA_VERSION,
            },
        )
        if local_id is None:
            return WriteResult(success=False, source=Source.LOCAL, error="Could not save the review on this device")
        return WriteResult(success=True, id=local_id, source=Source.LOCAL)

    def get_local_reviews(self) -> list[Review]:
        """Reviews that exist only on this device."""
        return self._local_reviews()

    async def get_reviews(self, page: int = 1, page_size: int = 10) -> ReviewPage:
        """One page of remote reviews, newest first, followed by every local review.

        Local reviews are few and are neither paginated nor counted in ``total``.
        """
        page = max(page, 1)
        offset = (page - 1) * page_size
        remote_reviews: list[Review] = []
        total = 0

        if self._remote_ready():
            try:
                total = await self.backend.count(REVIEWS_TABLE)
                rows = await self.backend.select(
                    REVIEWS_TABLE,
                    order_by="created_at",
                    descending=True,
                    offset=offset,
                    limit=page_size,
                )
                for row in rows:
                    row["comments_count"] = await self.backend.count(COMMENTS_TABLE, {"review_id": row["id"]})
                remote_reviews = [normalize_review(row, Source.REMOTE) for row in rows]
            except RemoteBackendError as e:
                self._remote_failed("review", "list", e)
                remote_reviews, total = [], 0

        return ReviewPage(
            data=remote_reviews + self._local_reviews(),
            total=total,
            limit=page_size,
            offset=offset,
            next_page=page + 1 if offset + page_size < total else None,
        )

    async def get_review(self, review_id: str) -> Optional[Review]:
        """A single review with its comments.

        While the remote backend is unreachable, comments this device holds
        for the review are still returned inside a placeholder review.
        """
        if is_local_id(review_id):
            return self._find_local_review(review_id)

        local_comments = self._side_table_comments(review_id)

        if self._remote_ready():
            try:
                rows = await self.backend.select(REVIEWS_TABLE, {"id": review_id})
                if not rows:
                    return None
                comment_rows = await self.backend.select(
                    COMMENTS_TABLE, {"review_id": review_id}, order_by="created_at"
                )
                review = normalize_review(rows[0], Source.REMOTE)
                comments = sorted(
                    [normalize_comment(row, Source.REMOTE) for row in comment_rows] + local_comments,
                    key=lambda comment: comment.created_at,
                )
                return review.model_copy(update={
                    "comments": comments,
                    "comments_count": len(comments),
                    "has_local_comments": bool(local_comments),
                })
            except RemoteUnavailableError as e:
                self._remote_failed("review", "read", e)
            except RemoteBackendError as e:
                self._remote_failed("review", "read", e)
                return None

        if local_comments:
            self._fell_back("review", "read")
            return self._placeholder(review_id, local_comments)
        return None

    async def update_review(self, review_id: str, patch: ReviewPatch) -> bool:
        """Edit a remote review. There is no offline edit: failures return False."""
        if is_local_id(review_id):
            logger.warning(f"Review {review_id} is device-local and cannot be edited")
            return False

        values = patch.model_dump(exclude_unset=True, exclude_none=True)
        if not values:
            return False

        if not self._remote_ready():
            self._remote_failed("review", "update")
            return False

        values["updated_at"] = utcnow()
        try:
            rows = await self.backend.update(REVIEWS_TABLE, review_id, values)
        except RemoteBackendError as e:
            self._remote_failed("review", "update", e)
            return False
        return bool(rows)

    async def delete_review(self, review_id: str) -> bool:
        """Delete a review together with every comment attached to it."""
        if is_local_id(review_id):
            if self._find_local_review(review_id) is None:
                return False
            removed = self.local_store.remove_where(REVIEWS_NAMESPACE, lambda record: record.get("id") == review_id)
            self.local_store.remove_from_map(COMMENTS_NAMESPACE, review_id)
            return removed

        if not self._remote_ready():
            self._remote_failed("review", "delete")
            return False

        try:
            deleted_comments = await self.backend.delete(COMMENTS_TABLE, {"review_id": review_id})
            deleted = await self.backend.delete(REVIEWS_TABLE, {"id": review_id})
        except RemoteBackendError as e:
            self._remote_failed("review", "delete", e)
            return False

        if deleted == 0:
            # Missing, or filtered out by the backend's authorization; ownership is never reassigned here
            logger.warning(f"Review {review_id} was not deleted (not found or not permitted)")
            return False

        self.local_store.remove_from_map(COMMENTS_NAMESPACE, review_id)
        logger.info(f"Review {review_id} deleted with {deleted_comments} comments")
        return True

    # ----- comments -----

    async def get_comments(self, review_id: str) -> list[Comment]:
        """Comments on a review, oldest first, including ones held on this device."""
        if is_local_id(review_id):
            review = self._find_local_review(review_id)
            return list(review.comments) if review else []

        comments: list[Comment] = []
        if self._remote_ready():
            try:
                rows = await self.backend.select(COMMENTS_TABLE, {"review_id": review_id}, order_by="created_at")
                comments = [normalize_comment(row, Source.REMOTE) for row in rows]
            except RemoteBackendError as e:
                self._remote_failed("comment", "list", e)

        comments.extend(self._side_table_comments(review_id))
        return sorted(comments, key=lambda comment: comment.created_at)

    async def add_comment(self, review_id: str, draft: CommentDraft) -> CommentResult:
        now = utcnow()

        if is_local_id(review_id):
            record = {
                **draft.model_dump(),
                "id": new_local_id(),
                "review_id": review_id,
                "created_at": now.isoformat(),
                "schema_version": RECORD_SCHEMA_VERSION,
            }
            appended = self.local_store.update_where(
                REVIEWS_NAMESPACE,
                lambda review: review.get("id") == review_id,
                lambda review: review.setdefault("comments", []).append(record),
            )
            if not appended:
                return CommentResult(success=False, source=Source.LOCAL)
            return CommentResult(success=True, comment=normalize_comment(record, Source.LOCAL), source=Source.LOCAL)

        if self._remote_ready():
            try:
                row = await self.backend.insert(
                    COMMENTS_TABLE,
                    {**draft.model_dump(), "review_id": review_id, "created_at": now},
                )
                return CommentResult(success=True, comment=normalize_comment(row, Source.REMOTE), source=Source.REMOTE)
            except RemoteBackendError as e:
                self._remote_failed("comment", "create", e)
        else:
            self._remote_failed("comment", "create")

        self._fell_back("comment", "create")
        record = {
            **draft.model_dump(),
            "review_id": review_id,
            "created_at": now.isoformat(),
            "schema_version": RECORD_SCHEMA_VERSION,
        }
        comment_id = self.local_store.append_to_map(COMMENTS_NAMESPACE, review_id, record)
        if comment_id is None:
            return CommentResult(success=False, source=Source.LOCAL)
        return CommentResult(
            success=True,
            comment=normalize_comment({**record, "id": comment_id}, Source.LOCAL),
            source=Source.LOCAL,
        )

    async def delete_comment(self, review_id: str, comment_id: str) -> DeleteResult:
        """Delete a comment from wherever ``add_comment`` put it."""
        if is_local_id(review_id):
            removed = []

            def drop(review: dict) -> None:
                kept = [c for c in review.get("comments", []) if c.get("id") != comment_id]
                removed.append(len(kept) != len(review.get("comments", [])))
                review["comments"] = kept

            written = self.local_store.update_where(
                REVIEWS_NAMESPACE, lambda review: review.get("id") == review_id, drop
            )
            return DeleteResult(success=written and any(removed), source=Source.LOCAL)

        if is_local_id(comment_id):
            removed = self.local_store.remove_from_map(
                COMMENTS_NAMESPACE, review_id, lambda comment: comment.get("id") == comment_id
            )
            return DeleteResult(success=removed, source=Source.LOCAL)

        if self._remote_ready():
            try:
                deleted = await self.backend.delete(COMMENTS_TABLE, {"id": comment_id, "review_id": review_id})
                return DeleteResult(success=deleted > 0, source=Source.REMOTE)
            except RemoteUnavailableError as e:
                self._remote_failed("comment", "delete", e)
            except RemoteBackendError as e:
                self._remote_failed("comment", "delete", e)
                return DeleteResult(success=False, source=Source.REMOTE)
        else:
            self._remote_failed("comment", "delete")

        removed = self.local_store.remove_from_map(
            COMMENTS_NAMESPACE, review_id, lambda comment: comment.get("id") == comment_id
        )
        return DeleteResult(success=removed, source=Source.LOCAL)
