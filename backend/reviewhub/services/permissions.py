"""Ownership checks for editing and deleting reviews and comments.

Rules are evaluated in order; the first one that matches allows:

1. demo-admin mode
2. an admin account
3. ``resource.user_id`` equals the user's id
4. legacy name matching (opt-in): the user's display name equals the
   resource's author string, or the user's email starts with it

Anything else is denied. Name matching is spoofable (anyone can pick a
matching display name), so it is off unless
``PERMISSIONS_LEGACY_NAME_MATCH`` is set; rows that predate ``user_id``
should get their owner assigned once by ``ownership_backfill`` instead.
"""
from typing import Optional, Protocol

from reviewhub.models.users import UserRole


class Actor(Protocol):
    id: str
    email: Optional[str]
    display_name: Optional[str]
    role: str


class OwnedResource(Protocol):
    author: str
    user_id: Optional[str]


def is_admin(user: Optional[Actor], demo_admin: bool = False) -> bool:
    if demo_admin:
        return True
    return user is not None and user.role == UserRole.ADMIN.value


def matches_author_name(user: Actor, author: Optional[str]) -> bool:
    """Legacy heuristic: display name equality or email prefix."""
    if not author:
        return False
    if user.display_name and user.display_name == author:
        return True
    return bool(user.email) and user.email.startswith(author)


def can_modify(
    user: Optional[Actor],
    demo_admin: bool,
    resource: OwnedResource,
    legacy_name_match: bool = False,
) -> bool:
    """Whether ``user`` may edit or delete ``resource``. Pure; no side effects."""
    if is_admin(user, demo_admin):
        return True
    if user is None:
        return False
    if resource.user_id and resource.user_id == user.id:
        return True
    if legacy_name_match:
        # A set-but-different user_id still falls through to name matching
        return matches_author_name(user, resource.author)
    return False
