"""Review and comment routes.

Reads are open to everyone; edits and deletions go through the ownership
check in ``reviewhub.services.permissions``.
"""
import asyncio
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from reviewhub.api.dependencies import get_optional_user, get_review_repository, is_demo_admin
from reviewhub.api.middleware.error_handler import (
    AppException,
    BadRequestException,
    ForbiddenException,
    NotFoundException,
)
from reviewhub.api.responses import author_name, with_notice
from reviewhub.lib.logging import get_logger
from reviewhub.lib.metrics import get_metrics_collector
from reviewhub.lib.settings import settings
from reviewhub.services.auth_service import Identity
from reviewhub.services.permissions import can_modify
from reviewhub.services.records import (
    Comment,
    CommentDraft,
    Review,
    ReviewDraft,
    ReviewPage,
    ReviewPatch,
    is_local_id,
)
from reviewhub.services.review_repository import ReviewRepository


logger = get_logger(__name__)

router = APIRouter(prefix="/reviews", tags=["Reviews"])


class ReviewCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    content: str = Field(..., min_length=1)
    rating: int = Field(..., ge=1, le=5)
    category: str = Field("", max_length=100)
    author: Optional[str] = Field(None, max_length=255, description="Defaults to the user's display name")


class CommentCreateRequest(BaseModel):
    content: str = Field(..., min_length=1)
    author: Optional[str] = Field(None, max_length=255)


class ReviewListResponse(ReviewPage):
    timed_out: bool = Field(False, description="Remote backend was too slow; only device-local reviews are listed")


def _unavailable(message: str) -> AppException:
    return AppException(message, status_code=status.HTTP_503_SERVICE_UNAVAILABLE)


async def _require_modifiable(
    repository: ReviewRepository,
    review_id: str,
    user: Optional[Identity],
    demo_admin: bool,
) -> Review:
    review = await repository.get_review(review_id)
    if review is None or review.is_placeholder:
        raise NotFoundException("Review", review_id)
    if not can_modify(user, demo_admin, review, settings.permissions_legacy_name_match):
        raise ForbiddenException("You can only modify your own reviews")
    return review


@router.get("", response_model=ReviewListResponse)
async def list_reviews(
    page: int = Query(1, ge=1),
    page_size: Optional[int] = Query(None, ge=1, le=100),
    repository: ReviewRepository = Depends(get_review_repository),
):
    """One page of reviews, newest first, followed by reviews held on this device."""
    page_size = page_size or settings.reviews_page_size
    try:
        result = await asyncio.wait_for(
            repository.get_reviews(page, page_size),
            timeout=settings.remote_timeout_seconds,
        )
    except asyncio.TimeoutError:
        logger.warning(f"Listing reviews timed out after {settings.remote_timeout_seconds}s")
        get_metrics_collector().increment_fallback("review", "list")
        return ReviewListResponse(
            data=repository.get_local_reviews(),
            total=0,
            limit=page_size,
            offset=(page - 1) * page_size,
            timed_out=True,
        )
    return ReviewListResponse(**result.model_dump())


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_review(
    request: ReviewCreateRequest,
    user: Optional[Identity] = Depends(get_optional_user),
    repository: ReviewRepository = Depends(get_review_repository),
):
    draft = ReviewDraft(
        title=request.title,
        content=request.content,
        rating=request.rating,
        category=request.category,
        author=author_name(user, request.author),
        user_id=user.id if user else None,
        avatar_url=user.avatar_url if user else None,
    )
    result = await repository.add_review(draft)
    if not result.success:
        raise _unavailable(result.error or "Could not save review")
    return with_notice(result.source, id=result.id)


@router.get("/{review_id}", response_model=Review)
async def get_review(
    review_id: str,
    repository: ReviewRepository = Depends(get_review_repository),
):
    review = await repository.get_review(review_id)
    if review is None:
        raise NotFoundException("Review", review_id)
    return review


@router.put("/{review_id}")
async def update_review(
    review_id: str,
    patch: ReviewPatch,
    user: Optional[Identity] = Depends(get_optional_user),
    demo_admin: bool = Depends(is_demo_admin),
    repository: ReviewRepository = Depends(get_review_repository),
):
    if not patch.model_dump(exclude_unset=True, exclude_none=True):
        raise BadRequestException("Nothing to update")
    review = await _require_modifiable(repository, review_id, user, demo_admin)
    if is_local_id(review_id):
        raise BadRequestException("Reviews saved on this device cannot be edited")

    if not await repository.update_review(review_id, patch):
        raise _unavailable("Review could not be updated")
    return with_notice(review.source, id=review_id, success=True)


@router.delete("/{review_id}")
async def delete_review(
    review_id: str,
    user: Optional[Identity] = Depends(get_optional_user),
    demo_admin: bool = Depends(is_demo_admin),
    repository: ReviewRepository = Depends(get_review_repository),
):
    review = await _require_modifiable(repository, review_id, user, demo_admin)
    if not await repository.delete_review(review_id):
        raise _unavailable("Review could not be deleted")
    return with_notice(review.source, id=review_id, success=True)


@router.get("/{review_id}/comments", response_model=list[Comment])
async def list_comments(
    review_id: str,
    repository: ReviewRepository = Depends(get_review_repository),
):
    return await repository.get_comments(review_id)


@router.post("/{review_id}/comments", status_code=status.HTTP_201_CREATED)
async def create_comment(
    review_id: str,
    request: CommentCreateRequest,
    user: Optional[Identity] = Depends(get_optional_user),
    repository: ReviewRepository = Depends(get_review_repository),
):
    draft = CommentDraft(
        content=request.content,
        author=author_name(user, request.author),
        user_id=user.id if user else None,
        avatar_url=user.avatar_url if user else None,
    )
    result = await repository.add_comment(review_id, draft)
    if not result.success:
        if is_local_id(review_id):
            raise NotFoundException("Review", review_id)
        raise _unavailable("Could not save comment")
    return with_notice(result.source, comment=result.comment.model_dump(mode="json"))


@router.delete("/{review_id}/comments/{comment_id}")
async def delete_comment(
    review_id: str,
    comment_id: str,
    user: Optional[Identity] = Depends(get_optional_user),
    demo_admin: bool = Depends(is_demo_admin),
    repository: ReviewRepository = Depends(get_review_repository),
):
    comments = await repository.get_comments(review_id)
    comment = next((c for c in comments if c.id == comment_id), None)
    if comment is None:
        raise NotFoundException("Comment", comment_id)
    if not can_modify(user, demo_admin, comment, settings.permissions_legacy_name_match):
        raise ForbiddenException("You can only delete your own comments")

    result = await repository.delete_comment(review_id, comment_id)
    if not result.success:
        raise _unavailable("Comment could not be deleted")
    return with_notice(result.source, id=comment_id, success=True)
