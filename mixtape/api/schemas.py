from __future__ import annotations

import re
from datetime import datetime
from typing import Any, List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from mixtape.logging import get_correlation_id
from mixtape.service.passwords import MAX_PASSWORD_LENGTH
from mixtape.storage.models import (
    EMAIL_MAX_LENGTH,
    USERNAME_MAX_LENGTH,
    USERNAME_MIN_LENGTH,
    User,
    normalize_email,
)

MIN_PASSWORD_LENGTH = 6
MAX_BIO_LENGTH = 500
MAX_URL_LENGTH = 2048
MAX_TOKEN_LENGTH = 4096

_VALID_ERROR_CODES = frozenset({
    "unauthorized",
    "forbidden",
    "not_found",
    "validation_error",
    "conflict",
    "server_error",
})


class ApiModel(BaseModel):
    """Base for request and response bodies; JSON keys are camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ErrorBody(BaseModel):
    """Error envelope body with a stable code value."""

    code: str = Field(..., description="Stable error code")
    message: str
    details: Optional[Any] = None  # object, array, or null

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _VALID_ERROR_CODES:
            raise ValueError(f"unknown error code: {value}")
        return value


def _request_id() -> str:
    return get_correlation_id() or str(uuid4())


class Envelope(BaseModel):
    """API envelope wrapping every JSON response."""

    status: str = Field(..., pattern="^(ok|error)$")
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=_request_id)


_EMAIL_LOCAL_PART = re.compile(r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+$")
_EMAIL_DOMAIN_LABEL = re.compile(r"^[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$")
_WHITESPACE = re.compile(r"\s")


def _validate_email(value: str) -> str:
    normalized = normalize_email(value)
    if len(normalized) > EMAIL_MAX_LENGTH:
        raise ValueError("email address too long")
    local, sep, domain = normalized.partition("@")
    if not sep or not local or not domain:
        raise ValueError("invalid email address")
    if len(local) > 64 or not _EMAIL_LOCAL_PART.match(local):
        raise ValueError("invalid email address format")
    domain_parts = domain.split(".")
    if len(domain_parts) < 2:
        raise ValueError("invalid email address format")
    for label in domain_parts:
        if len(label) > 63 or not _EMAIL_DOMAIN_LABEL.match(label):
            raise ValueError("invalid email address format")
    return normalized


def _validate_username(value: str) -> str:
    value = value.strip()
    if len(value) < USERNAME_MIN_LENGTH:
        raise ValueError(f"username must be at least {USERNAME_MIN_LENGTH} characters")
    if len(value) > USERNAME_MAX_LENGTH:
        raise ValueError(f"username must be at most {USERNAME_MAX_LENGTH} characters")
    if _WHITESPACE.search(value):
        raise ValueError("username must not contain whitespace")
    return value


class RegisterRequest(ApiModel):
    email: str
    username: str
    password: str = Field(
        ..., min_length=MIN_PASSWORD_LENGTH, max_length=MAX_PASSWORD_LENGTH
    )

    @field_validator("email")
    @classmethod
    def _validate_register_email(cls, value: str) -> str:
        return _validate_email(value)

    @field_validator("username")
    @classmethod
    def _validate_register_username(cls, value: str) -> str:
        return _validate_username(value)


class LoginRequest(ApiModel):
    email: str
    password: str = Field(..., min_length=1, max_length=MAX_PASSWORD_LENGTH)

    @field_validator("email")
    @classmethod
    def _validate_login_email(cls, value: str) -> str:
        return _validate_email(value)


class TokenRefreshRequest(ApiModel):
    refresh_token: str = Field(..., min_length=1, max_length=MAX_TOKEN_LENGTH)


class UpdateProfileRequest(ApiModel):
    bio: Optional[str] = Field(default=None, max_length=MAX_BIO_LENGTH)
    avatar_url: Optional[str] = Field(default=None, max_length=MAX_URL_LENGTH)

    @field_validator("avatar_url")
    @classmethod
    def _validate_avatar_url(cls, value: Optional[str]) -> Optional[str]:
        if value and not value.startswith(("http://", "https://")):
            raise ValueError("avatarUrl must be an http(s) URL")
        return value


class UserView(ApiModel):
    """Public projection of a user; never carries credentials."""

    id: str
    email: str
    username: str
    avatar_url: Optional[str] = None
    bio: Optional[str] = None
    playlist_count: int = 0
    federated_provider: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_user(cls, user: User) -> "UserView":
        return cls(
            id=user.id,
            email=user.email,
            username=user.username,
            avatar_url=user.avatar_url,
            bio=user.bio,
            playlist_count=user.playlist_count,
            federated_provider=user.federated_provider,
            created_at=user.created_at,
            updated_at=user.updated_at,
        )


class AuthResponse(ApiModel):
    user: UserView
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class TokenPairResponse(ApiModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class UserResponse(ApiModel):
    user: UserView


class UserProfileResponse(ApiModel):
    user: UserView
    is_self: bool = False


class Pagination(ApiModel):
    page: int
    limit: int
    total: int
    pages: int


class UserListResponse(ApiModel):
    users: List[UserView]
    pagination: Pagination


class MessageResponse(ApiModel):
    message: str
