"""Canonical record shapes shared by both storage tiers.

Rows from the remote backend and JSON records from device storage are
normalized here before a repository hands them out, so callers only ever
see one schema. Local records carry a ``schema_version``:

    1  legacy camelCase keys (createdAt, userId, roomId, commentCount, ...)
    2  snake_case keys, matching the remote columns

Version 1 records are migrated on read; new local records are written as
version 2.
"""
import enum
from datetime import date as date_type, datetime, timezone
from typing import Annotated, Any, Mapping, Optional

from pydantic import AfterValidator, BaseModel, Field, model_validator


RECORD_SCHEMA_VERSION = 2

LOCAL_ID_PREFIX = "local_"


def is_local_id(record_id: Optional[str]) -> bool:
    """Whether an id denotes a device-local record."""
    return bool(record_id) and record_id.startswith(LOCAL_ID_PREFIX)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def today() -> str:
    return date_type.today().isoformat()


class Source(str, enum.Enum):
    """Provenance of a record or write result."""
    REMOTE = "remote"
    LOCAL = "local"

    @property
    def notice(self) -> str:
        """User-facing durability notice for a write served by this tier."""
        if self is Source.REMOTE:
            return "Saved to the server."
        return "Saved on this device only because the server is unreachable."


def _as_utc(value: Any) -> Any:
    # SQLite hands back naive datetimes; treat them as UTC
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


UtcDatetime = Annotated[datetime, AfterValidator(_as_utc)]


class _Record(BaseModel):
    model_config = {"extra": "ignore", "populate_by_name": True}


class Comment(_Record):
    id: str
    review_id: str
    author: str
    content: str
    created_at: UtcDatetime = Field(default_factory=utcnow)
    user_id: Optional[str] = None
    avatar_url: Optional[str] = None
    source: Source = Source.REMOTE


class Review(_Record):
    id: str
    title: str
    author: str
    content: str
    rating: Optional[int] = Field(default=None, ge=1, le=5)
    category: str = ""
    date: str = Field(default_factory=today)
    created_at: UtcDatetime = Field(default_factory=utcnow)
    updated_at: Optional[UtcDatetime] = None
    user_id: Optional[str] = None
    avatar_url: Optional[str] = None
    comments: list[Comment] = Field(default_factory=list)
    comments_count: int = 0
    source: Source = Source.REMOTE
    has_local_comments: bool = False
    is_placeholder: bool = False

    @model_validator(mode="after")
    def _rating_required(self) -> "Review":
        if self.rating is None and not self.is_placeholder:
            raise ValueError("rating is required")
        return self


class ChatRoom(_Record):
    id: str
    name: str
    description: str = ""
    created_by: Optional[str] = None
    created_at: UtcDatetime = Field(default_factory=utcnow)
    last_activity: UtcDatetime = Field(default_factory=utcnow)
    active_users: int = Field(default=0, ge=0)
    source: Source = Source.REMOTE


class ChatMessage(_Record):
    id: str
    room_id: str
    author: str
    content: str
    created_at: UtcDatetime = Field(default_factory=utcnow)
    user_id: Optional[str] = None
    avatar_url: Optional[str] = None
    source: Source = Source.REMOTE


# ---------------------------------------------------------------------------
# Inputs (validated by the caller before reaching a repository)
# ---------------------------------------------------------------------------

class ReviewDraft(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    author: str = Field(min_length=1, max_length=255)
    content: str = Field(min_length=1)
    rating: int = Field(ge=1, le=5)
    category: str = Field(default="", max_length=100)
    user_id: Optional[str] = None
    avatar_url: Optional[str] = None


class ReviewPatch(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    content: Optional[str] = Field(default=None, min_length=1)
    rating: Optional[int] = Field(default=None, ge=1, le=5)
    category: Optional[str] = Field(default=None, max_length=100)


class CommentDraft(BaseModel):
    author: str = Field(min_length=1, max_length=255)
    content: str = Field(min_length=1)
    user_id: Optional[str] = None
    avatar_url: Optional[str] = None


class ChatRoomDraft(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str = ""


class ChatMessageDraft(BaseModel):
    author: str = Field(min_length=1, max_length=255)
    content: str = Field(min_length=1)
    user_id: Optional[str] = None
    avatar_url: Optional[str] = None


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

class WriteResult(BaseModel):
    """Outcome of a create operation."""
    success: bool
    id: Optional[str] = None
    source: Source
    error: Optional[str] = None


class CommentResult(BaseModel):
    success: bool
    comment: Optional[Comment] = None
    source: Source


class DeleteResult(BaseModel):
    success: bool
    source: Source


class ReviewPage(BaseModel):
    data: list[Review]
    total: int
    limit: int
    offset: int
    next_page: Optional[int] = None


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------

_V1_KEYS = {
    "createdAt": "created_at",
    "updatedAt": "updated_at",
    "userId": "user_id",
    "reviewId": "review_id",
    "roomId": "room_id",
    "createdBy": "created_by",
    "lastActivity": "last_activity",
    "activeUsers": "active_users",
    "avatarURL": "avatar_url",
    "photoURL": "avatar_url",
    "commentCount": "comments_count",
    "commentsCount": "comments_count",
    "hasLocalComments": "has_local_comments",
}


def migrate_record(raw: Mapping[str, Any]) -> dict:
    """Bring a stored record up to RECORD_SCHEMA_VERSION."""
    record = dict(raw)
    version = record.pop("schema_version", None)
    if version is None:
        version = 1 if any(key in record for key in _V1_KEYS) else RECORD_SCHEMA_VERSION

    if version < 2:
        for old, new in _V1_KEYS.items():
            if old in record:
                value = record.pop(old)
                record.setdefault(new, value)
        # v1 chat messages stored their body under "text"
        if "text" in record and "content" not in record:
            record["content"] = record.pop("text")
        record.pop("isLocal", None)

    return record


def normalize_comment(raw: Mapping[str, Any], source: Source, review_id: Optional[str] = None) -> Comment:
    data = migrate_record(raw)
    if review_id is not None:
        data.setdefault("review_id", review_id)
    data["source"] = source
    return Comment.model_validate(data)


def normalize_review(raw: Mapping[str, Any], source: Source) -> Review:
    data = migrate_record(raw)

    # Embedded comment arrays (local records) vs. aggregate counts (remote rows)
    raw_comments = data.pop("comments", None) or []
    explicit_count = data.pop("comments_count", None)
    comments = [
        normalize_comment(comment, source, review_id=data.get("id"))
        for comment in raw_comments
    ]

    data["comments"] = comments
    data["comments_count"] = explicit_count if explicit_count is not None else len(comments)
    data["source"] = source
    return Review.model_validate(data)


def normalize_chat_room(raw: Mapping[str, Any], source: Source) -> ChatRoom:
    data = migrate_record(raw)
    if data.get("active_users") is None:
        data["active_users"] = 0
    data["source"] = source
    return ChatRoom.model_validate(data)


def normalize_chat_message(raw: Mapping[str, Any], source: Source) -> ChatMessage:
    data = migrate_record(raw)
    data["source"] = source
    return ChatMessage.model_validate(data)
