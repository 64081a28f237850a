"""
Unit tests for AuthService.
"""
import pytest

from reviewhub.lib.jwt import verify_token
from reviewhub.models.users import User, UserRole
from reviewhub.services.auth_service import (
    AVATAR_BUCKET,
    AuthService,
    EmailAlreadyRegisteredError,
    Identity,
    InvalidCredentialsError,
    hash_password,
    verify_password,
)


@pytest.fixture
def auth_service(db_session):
    return AuthService(db_session)


@pytest.mark.unit
def test_password_hash_round_trip():
    """Test bcrypt hashing and verification of a password."""
    stored = hash_password("s3cret!")

    assert stored.startswith("$2b$")
    assert stored != hash_password("s3cret!")
    assert verify_password("s3cret!", stored) is True
    assert verify_password("wrong", stored) is False
    assert verify_password("s3cret!", "garbage") is False


@pytest.mark.unit
def test_sign_up_creates_user(auth_service, db_session):
    """Test sign up creates user."""
    identity = auth_service.sign_up("Ann@Example.com", "password1", "Ann")

    assert identity.email == "ann@example.com"
    assert identity.display_name == "Ann"
    assert identity.role == UserRole.USER.value
    stored = db_session.get(User, identity.id)
    assert stored.password_hash != "password1"


@pytest.mark.unit
def test_sign_up_defaults_display_name_to_email_prefix(auth_service):
    """Test sign up defaults display name to email prefix."""
    assert auth_service.sign_up("carol@example.com", "password1").display_name == "carol"


@pytest.mark.unit
def test_sign_up_rejects_duplicates_and_bad_input(auth_service):
    """Test sign up rejects duplicates and bad input."""
    auth_service.sign_up("ann@example.com", "password1")

    with pytest.raises(EmailAlreadyRegisteredError):
        auth_service.sign_up("ann@example.com", "password2")
    with pytest.raises(ValueError):
        auth_service.sign_up("not-an-email", "password1")
    with pytest.raises(ValueError):
        auth_service.sign_up("dan@example.com", "short")


@pytest.mark.unit
def test_sign_in_issues_token(auth_service):
    """Test sign in issues token."""
    identity = auth_service.sign_up("ann@example.com", "password1")

    result = auth_service.sign_in("ann@example.com", "password1")

    assert result["user"].id == identity.id
    payload = verify_token(result["token"])
    assert payload["sub"] == identity.id
    assert payload["role"] == "user"


@pytest.mark.unit
def test_sign_in_wrong_password(auth_service):
    """Test sign in wrong password."""
    auth_service.sign_up("ann@example.com", "password1")

    with pytest.raises(InvalidCredentialsError):
        auth_service.sign_in("ann@example.com", "nope")
    with pytest.raises(InvalidCredentialsError):
        auth_service.sign_in("ghost@example.com", "password1")


@pytest.mark.unit
def test_get_current_user(auth_service):
    """Test get current user."""
    identity = auth_service.sign_up("ann@example.com", "password1")
    token = auth_service.sign_in("ann@example.com", "password1")["token"]

    assert auth_service.get_current_user(token) == identity
    assert auth_service.get_current_user("not-a-token") is None


@pytest.mark.unit
def test_auth_state_listeners(auth_service):
    """Test auth state listeners."""
    events = []
    unsubscribe = auth_service.on_auth_state_change(events.append)
    try:
        identity = auth_service.sign_up("ann@example.com", "password1")
        auth_service.sign_in("ann@example.com", "password1")
        auth_service.sign_out(identity.id)
    finally:
        unsubscribe()

    assert events == [identity, None]

    auth_service.sign_in("ann@example.com", "password1")
    assert len(events) == 2


@pytest.mark.unit
def test_failing_listener_does_not_break_sign_in(auth_service):
    """Test failing listener does not break sign in."""
    def broken(identity):
        raise RuntimeError("listener bug")

    unsubscribe = auth_service.on_auth_state_change(broken)
    try:
        auth_service.sign_up("ann@example.com", "password1")
        assert auth_service.sign_in("ann@example.com", "password1")["token"]
    finally:
        unsubscribe()


@pytest.mark.unit
def test_identity_exposes_metadata_role(auth_service):
    """Test identity exposes metadata role."""
    identity = auth_service.sign_up("root@example.com", "password1", role=UserRole.ADMIN)

    assert identity.role == "admin"
    assert identity.metadata == {"role": "admin"}


@pytest.mark.unit
@pytest.mark.asyncio
async def test_upload_avatar(auth_service, backend, db_session, tmp_path):
    """Test upload avatar."""
    identity = auth_service.sign_up("ann@example.com", "password1")

    url = await auth_service.upload_avatar(identity, "me.PNG", b"\x89PNG", backend)

    assert url.startswith(f"http://test/storage/{AVATAR_BUCKET}/{identity.id}-")
    assert url.endswith(".png")
    assert db_session.get(User, identity.id).avatar_url == url
    assert len(list((tmp_path / "buckets" / AVATAR_BUCKET).iterdir())) == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_upload_avatar_offline_returns_none(auth_service, offline_backend):
    """Test upload avatar offline returns none."""
    identity = Identity(id="user-1", email="ann@example.com")

    assert await auth_service.upload_avatar(identity, "me.png", b"x", offline_backend) is None


@pytest.mark.unit
def test_sign_up_rejects_password_longer_than_bcrypt_accepts(auth_service):
    """Test that passwords over 72 bytes are refused instead of silently truncated."""
    with pytest.raises(ValueError):
        auth_service.sign_up("long@example.com", "x" * 73)
