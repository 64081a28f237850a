"""Authentication service for email/password accounts.

Handles the session lifecycle:
1. Sign up: create the account with a bcrypt password hash
2. Sign in: verify the password and issue a JWT token
3. Current user: resolve a token back to an Identity
4. Avatar upload: store the image in the ``avatars`` bucket
"""
import secrets
from typing import Any, Callable, Optional

import bcrypt
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from reviewhub.lib.jwt import InvalidTokenError, create_access_token, verify_token
from reviewhub.lib.logging import get_logger
from reviewhub.models.users import User, UserRole
from reviewhub.services.remote_backend import RemoteBackend, RemoteBackendError


logger = get_logger(__name__)


AVATAR_BUCKET = "avatars"

# bcrypt only hashes the first 72 bytes
MAX_PASSWORD_BYTES = 72


class InvalidCredentialsError(Exception):
    """Email/password pair did not match an account."""


class EmailAlreadyRegisteredError(Exception):
    """An account with this email already exists."""


class Identity(BaseModel):
    """The signed-in user as seen by the rest of the application."""
    id: str
    email: str
    display_name: Optional[str] = None
    role: str = UserRole.USER.value
    avatar_url: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_user(cls, user: User) -> "Identity":
        return cls(
            id=str(user.id),
            email=user.email,
            display_name=user.display_name,
            role=user.role,
            avatar_url=user.avatar_url,
            metadata=user.extra_data or {},
        )


AuthStateCallback = Callable[[Optional[Identity]], None]

# Shared across service instances: one service is built per request
_listeners: list[AuthStateCallback] = []


def hash_password(password: str) -> str:
    """Hash a password with a fresh bcrypt salt."""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, stored: str) -> bool:
    """Check a password against a stored bcrypt hash; False for malformed hashes."""
    try:
        return bcrypt.checkpw(password.encode("utf-8"), stored.encode("utf-8"))
    except ValueError:
        return False


class AuthService:
    """Account and session operations backed by the ``users`` table."""

    def __init__(self, session: Session):
        """Initialize auth service with database session.

        Args:
            session: SQLAlchemy session for database operations
        """
        self.session = session

    def _find_by_email(self, email: str) -> Optional[User]:
        return self.session.execute(
            select(User).where(User.email == email.lower())
        ).scalar_one_or_none()

    def _notify(self, identity: Optional[Identity]) -> None:
        for callback in list(_listeners):
            try:
                callback(identity)
            except Exception as e:
                logger.error(f"Auth state listener failed: {e}", exc_info=True)

    def on_auth_state_change(self, callback: AuthStateCallback) -> Callable[[], None]:
        """Register a listener for sign-in (Identity) and sign-out (None)."""
        _listeners.append(callback)

        def unsubscribe() -> None:
            if callback in _listeners:
                _listeners.remove(callback)

        return unsubscribe

    def sign_up(
        self,
        email: str,
        password: str,
        display_name: Optional[str] = None,
        role: UserRole = UserRole.USER,
    ) -> Identity:
        """Create an account.

        Raises:
            ValueError: If email or password is unusable
            EmailAlreadyRegisteredError: If the email is taken
        """
        if not email or "@" not in email:
            raise ValueError("Invalid email address")
        if len(password) < 6:
            raise ValueError("Password must be at least 6 characters")
        if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")
        if self._find_by_email(email) is not None:
            raise EmailAlreadyRegisteredError(email)

        user = User(
            email=email.lower(),
            password_hash=hash_password(password),
            display_name=display_name or email.split("@")[0],
            role=role.value,
            extra_data={"role": role.value},
        )
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)

        logger.info(f"Account created for user {user.id}")
        return Identity.from_user(user)

    def sign_in(self, email: str, password: str) -> dict:
        """Verify credentials and issue an access token.

        Returns:
            {"token": "<jwt>", "user": Identity}

        Raises:
            InvalidCredentialsError: If the email is unknown or the password is wrong
        """
        user = self._find_by_email(email)
        if user is None or not verify_password(password, user.password_hash):
            logger.warning("Rejected sign-in attempt", extra={"email_domain": email.partition("@")[2]})
            raise InvalidCredentialsError("Invalid email or password")

        identity = Identity.from_user(user)
        token = create_access_token(user_id=identity.id, role=identity.role)
        self._notify(identity)
        return {"token": token, "user": identity}

    def sign_out(self, user_id: str) -> None:
        """End the session. Tokens are stateless; the client discards its copy."""
        logger.info(f"User {user_id} signed out")
        self._notify(None)

    def get_current_user(self, token: str) -> Optional[Identity]:
        """Resolve a bearer token to its Identity; None when invalid or the user is gone."""
        try:
            payload = verify_token(token)
        except InvalidTokenError as e:
            logger.debug(f"Rejected token: {e}")
            return None

        user_id = payload.get("sub")
        if not user_id:
            return None
        user = self.session.get(User, user_id)
        return Identity.from_user(user) if user else None

    async def upload_avatar(
        self,
        identity: Identity,
        filename: str,
        data: bytes,
        backend: RemoteBackend,
    ) -> Optional[str]:
        """Store an avatar image and record its public URL on the account.

        Returns the URL, or None if the upload failed.
        """
        extension = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
        if not extension.isalnum():
            extension = "bin"
        path = f"{identity.id}-{secrets.token_hex(6)}.{extension}"

        try:
            await backend.upload(AVATAR_BUCKET, path, data)
        except RemoteBackendError as e:
            logger.warning(f"Avatar upload for user {identity.id} failed: {e}")
            return None

        url = backend.get_public_url(AVATAR_BUCKET, path)
        user = self.session.get(User, identity.id)
        if user is not None:
            user.avatar_url = url
            self.session.commit()
        return url
