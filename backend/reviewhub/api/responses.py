"""Response envelopes shared by the data routes."""
from typing import Any, Optional

from reviewhub.services.auth_service import Identity
from reviewhub.services.records import Source


def with_notice(source: Source, **fields: Any) -> dict:
    """A mutation response: the payload plus where it was stored and a user-facing notice."""
    return {**fields, "source": source.value, "notice": source.notice}


def author_name(user: Optional[Identity], requested: Optional[str]) -> str:
    """Byline for new content: explicit name, else the user's display name or email prefix."""
    if requested and requested.strip():
        return requested.strip()
    if user is not None:
        return user.display_name or user.email.split("@")[0]
    return "Anonymous"
