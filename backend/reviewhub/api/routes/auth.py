"""Authentication routes.

- POST /auth/signup: create an account
- POST /auth/signin: verify credentials and get a JWT token
- POST /auth/signout: end the session
- GET /auth/me: the signed-in user
- POST /auth/avatar: upload an avatar image (raw body)
"""
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request, status
from pydantic import BaseModel, Field

from reviewhub.api.dependencies import get_auth_service, get_current_user, get_remote_backend
from reviewhub.api.middleware.error_handler import (
    AppException,
    BadRequestException,
    ConflictException,
    UnauthorizedException,
)
from reviewhub.services.auth_service import (
    AuthService,
    EmailAlreadyRegisteredError,
    Identity,
    InvalidCredentialsError,
)
from reviewhub.services.remote_backend import RemoteBackend


router = APIRouter(prefix="/auth", tags=["Authentication"])

MAX_AVATAR_BYTES = 2 * 1024 * 1024


class SignUpRequest(BaseModel):
    email: str = Field(..., description="Email address", examples=["user@example.com"])
    password: str = Field(..., min_length=6)
    display_name: Optional[str] = Field(None, max_length=255)


class SignInRequest(BaseModel):
    email: str = Field(..., description="Email address")
    password: str


class SignInResponse(BaseModel):
    """Sign-in response with JWT token."""
    token: str = Field(..., description="JWT access token")
    user: Identity


class AvatarResponse(BaseModel):
    avatar_url: str


@router.post("/signup", response_model=Identity, status_code=status.HTTP_201_CREATED)
async def sign_up(
    request: SignUpRequest,
    auth_service: AuthService = Depends(get_auth_service),
):
    """Create an account. Sign in afterwards to get a token."""
    try:
        return auth_service.sign_up(request.email, request.password, request.display_name)
    except ValueError as e:
        raise BadRequestException(str(e))
    except EmailAlreadyRegisteredError:
        raise ConflictException("Email already registered")


@router.post("/signin", response_model=SignInResponse)
async def sign_in(
    request: SignInRequest,
    auth_service: AuthService = Depends(get_auth_service),
):
    try:
        return auth_service.sign_in(request.email, request.password)
    except InvalidCredentialsError:
        raise UnauthorizedException("Invalid email or password")


@router.post("/signout")
async def sign_out(
    user: Identity = Depends(get_current_user),
    auth_service: AuthService = Depends(get_auth_service),
):
    auth_service.sign_out(user.id)
    return {"message": "Signed out"}


@router.get("/me", response_model=Identity)
async def me(user: Identity = Depends(get_current_user)):
    return user


@router.post("/avatar", response_model=AvatarResponse)
async def upload_avatar(
    request: Request,
    x_filename: str = Header(..., description="Original file name; its extension is kept"),
    user: Identity = Depends(get_current_user),
    auth_service: AuthService = Depends(get_auth_service),
    backend: RemoteBackend = Depends(get_remote_backend),
):
    """Upload the raw request body as the user's avatar."""
    data = await request.body()
    if not data:
        raise BadRequestException("Empty upload")
    if len(data) > MAX_AVATAR_BYTES:
        raise BadRequestException("Avatar too large", details={"max_bytes": MAX_AVATAR_BYTES})

    url = await auth_service.upload_avatar(user, x_filename, data, backend)
    if url is None:
        raise AppException("Avatar upload failed", status_code=status.HTTP_503_SERVICE_UNAVAILABLE)
    return AvatarResponse(avatar_url=url)
