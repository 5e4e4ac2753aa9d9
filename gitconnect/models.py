"""
Unified models for GitConnect - SQLAlchemy and Pydantic models in one place

The only durable record is the User row; everything fetched from GitHub is
proxied and cached in memory, never persisted.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func

# ============================================================================
# SQLALCHEMY MODELS (Database Schema)
# ============================================================================


class Base(DeclarativeBase):
    pass


class User(Base):
    """GitHub user plus the upstream credential used on their behalf"""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    github_id: Mapped[str] = mapped_column(
        String(64), unique=True, index=True, nullable=False
    )
    login: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    avatar_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    bio: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    profile_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    followers_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    following_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Upstream credential (encrypted at rest when a key is configured)
    access_token: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    refresh_token: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    token_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    scope: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    token_updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    token_expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    refresh_token_expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # GitHub App installation used when the user has no OAuth token on record
    installation_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    source: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), onupdate=func.now()
    )
    last_login: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )


# ============================================================================
# PYDANTIC MODELS (API Schemas)
# ============================================================================


class TokenPayload(BaseModel):
    """Normalized answer of the GitHub OAuth token endpoint"""

    access_token: str
    refresh_token: Optional[str] = None
    token_type: Optional[str] = None
    scope: Optional[str] = None
    token_expires_at: Optional[datetime] = None
    refresh_token_expires_at: Optional[datetime] = None


class UserProfile(BaseModel):
    """User record as returned to the browser - never carries token fields"""

    model_config = ConfigDict(from_attributes=True)

    id: str
    github_id: str
    login: Optional[str] = None
    name: Optional[str] = None
    avatar_url: Optional[str] = None
    bio: Optional[str] = None
    email: Optional[str] = None
    profile_url: Optional[str] = None
    followers_count: Optional[int] = None
    following_count: Optional[int] = None
    token_scope: Optional[str] = Field(default=None, validation_alias="scope")
    token_expires_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    last_login: Optional[datetime] = None


class AuthResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    access_token: str = Field(serialization_alias="accessToken")
    expires_at: datetime = Field(serialization_alias="expiresAt")
    user: UserProfile


class OAuthCallbackRequest(BaseModel):
    code: str = Field(min_length=1)
    installation_id: Optional[int] = None


class RateLimitMeta(BaseModel):
    limit: Optional[int] = None
    remaining: Optional[int] = None
    reset: Optional[int] = None
    retry_after: Optional[int] = Field(default=None, serialization_alias="retryAfter")


class PaginationMeta(BaseModel):
    link: Optional[str] = None
    next: Optional[str] = None
    prev: Optional[str] = None
    first: Optional[str] = None
    last: Optional[str] = None
    page: Optional[int] = None


class ResponseMeta(BaseModel):
    pagination: PaginationMeta
    rate_limit: RateLimitMeta = Field(serialization_alias="rateLimit")

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class APIError(BaseModel):
    code: str
    message: str
    details: Optional[Any] = None
