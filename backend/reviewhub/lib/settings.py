"""
Application settings loaded from environment variables.
Uses pydantic-settings for validation and .env file support.
"""
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Remote backend (relational store behind the data layer)
    database_url: str = Field(
        default="sqlite:///./reviewhub.db",
        description="SQLAlchemy connection string for the remote backend"
    )
    remote_offline: bool = Field(
        default=False,
        description="Treat the remote backend as unreachable (forces the local fallback)"
    )
    remote_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Seconds a listing call may wait on the remote backend before serving local data"
    )

    # Local fallback tier
    local_storage_dir: str = Field(
        default="./.local_store",
        description="Directory holding the device-local JSON collections"
    )

    # Object storage
    storage_root: str = Field(
        default="./.buckets",
        description="Directory backing uploaded objects (avatars)"
    )
    public_storage_url: str = Field(
        default="http://localhost:8000/storage",
        description="Base URL under which uploaded objects are served"
    )

    # JWT
    jwt_secret: str = Field(
        default="change-me-in-prod",
        description="Secret key for JWT token signing"
    )
    jwt_algorithm: str = Field(
        default="HS256",
        description="JWT signing algorithm"
    )
    jwt_expiration_minutes: int = Field(
        default=10080,  # 7 days
        description="JWT token expiration in minutes"
    )

    # Permissions
    demo_admin_enabled: bool = Field(
        default=True,
        description="Honour the X-Demo-Admin header (full admin without verified identity)"
    )
    permissions_legacy_name_match: bool = Field(
        default=False,
        description="Also match ownership by display name / email prefix for rows without a matching user_id"
    )

    # Chat
    room_inactivity_minutes: int = Field(
        default=30,
        ge=1,
        description="Idle minutes after which an empty chat room is deleted"
    )
    room_cleanup_interval_minutes: int = Field(
        default=5,
        ge=1,
        description="Minutes between inactive-room cleanup runs"
    )
    scheduler_enabled: bool = Field(
        default=True,
        description="Run the room cleanup job in this process"
    )
    chat_messages_limit: int = Field(
        default=100,
        ge=1,
        description="Most recent messages delivered to a room subscriber"
    )

    # Reviews
    reviews_page_size: int = Field(
        default=10,
        ge=1,
        le=100,
        description="Default page size for review listings"
    )

    # Application
    app_name: str = Field(default="ReviewHub Backend", description="Application name")
    debug: bool = Field(default=False, description="Debug mode")


# Global settings instance
settings = Settings()
