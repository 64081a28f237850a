"""
API dependencies for FastAPI dependency injection.

Provides the shared data-layer objects (remote backend, local store,
repositories) and authentication.
"""
from datetime import timedelta
from typing import Optional

from fastapi import Depends, Header
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from reviewhub.api.middleware.error_handler import UnauthorizedException
from reviewhub.lib.db import SessionLocal, get_db as get_db_session
from reviewhub.lib.settings import settings
from reviewhub.services.auth_service import AuthService, Identity
from reviewhub.services.chat_repository import ChatRepository
from reviewhub.services.local_store import FileDeviceStorage, LocalStore
from reviewhub.services.realtime import RealtimeHub
from reviewhub.services.remote_backend import RemoteBackend, SqlAlchemyBackend
from reviewhub.services.review_repository import ReviewRepository


# Re-export get_db for convenience
get_db = get_db_session


# HTTP Bearer token security scheme; anonymous access is allowed for reads
security = HTTPBearer(auto_error=False)


_hub: Optional[RealtimeHub] = None
_backend: Optional[RemoteBackend] = None
_local_store: Optional[LocalStore] = None


def get_realtime_hub() -> RealtimeHub:
    global _hub
    if _hub is None:
        _hub = RealtimeHub()
    return _hub


def get_remote_backend() -> RemoteBackend:
    """Process-wide remote backend client."""
    global _backend
    if _backend is None:
        _backend = SqlAlchemyBackend(
            SessionLocal,
            hub=get_realtime_hub(),
            storage_root=settings.storage_root,
            public_url_base=settings.public_storage_url,
            online=not settings.remote_offline,
        )
    return _backend


def get_local_store() -> LocalStore:
    """Process-wide device-local store."""
    global _local_store
    if _local_store is None:
        _local_store = LocalStore(FileDeviceStorage(settings.local_storage_dir))
    return _local_store


def get_review_repository(
    backend: RemoteBackend = Depends(get_remote_backend),
    local_store: LocalStore = Depends(get_local_store),
) -> ReviewRepository:
    return ReviewRepository(backend, local_store)


def build_chat_repository(
    backend: Optional[RemoteBackend] = None,
    local_store: Optional[LocalStore] = None,
) -> ChatRepository:
    return ChatRepository(
        backend or get_remote_backend(),
        local_store or get_local_store(),
        inactivity=timedelta(minutes=settings.room_inactivity_minutes),
    )


def get_chat_repository(
    backend: RemoteBackend = Depends(get_remote_backend),
    local_store: LocalStore = Depends(get_local_store),
) -> ChatRepository:
    return build_chat_repository(backend, local_store)


def get_auth_service(db: Session = Depends(get_db)) -> AuthService:
    """Get AuthService instance with database session."""
    return AuthService(db)


async def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    auth_service: AuthService = Depends(get_auth_service),
) -> Optional[Identity]:
    """
    Dependency to get current user if authenticated, None otherwise.

    Useful for endpoints that work with or without authentication.
    """
    if not credentials:
        return None
    return auth_service.get_current_user(credentials.credentials)


async def get_current_user(
    user: Optional[Identity] = Depends(get_optional_user),
) -> Identity:
    """
    Dependency to get current authenticated user from JWT token.

    Raises:
        UnauthorizedException: If the token is missing, invalid or the user is gone
    """
    if user is None:
        raise UnauthorizedException("Could not validate credentials")
    return user


def is_demo_admin(x_demo_admin: Optional[str] = Header(default=None)) -> bool:
    """Demo-admin mode: the X-Demo-Admin header, when the deployment allows it."""
    if not settings.demo_admin_enabled or x_demo_admin is None:
        return False
    return x_demo_admin.strip().lower() in ("1", "true", "yes")


def reset_dependencies() -> None:
    """Forget process-wide singletons (for testing)."""
    global _hub, _backend, _local_store
    _hub = None
    _backend = None
    _local_store = None
