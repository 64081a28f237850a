"""
SQLAlchemy models package.
Import all models here to ensure they're registered with Base.metadata.
"""
from reviewhub.models.users import User, UserRole
from reviewhub.models.reviews import Review
from reviewhub.models.comments import Comment
from reviewhub.models.chat import ChatRoom, ChatMessage

__all__ = [
    "User",
    "UserRole",
    "Review",
    "Comment",
    "ChatRoom",
    "ChatMessage",
]
