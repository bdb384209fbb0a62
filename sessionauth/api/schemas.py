from __future__ import annotations

import re
import unicodedata
from datetime import datetime
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from sessionauth.logging import get_correlation_id

_VALID_ERROR_CODES = {
    "validation_error",
    "already_verified",
    "token_expired",
    "unauthorized",
    "forbidden",
    "not_found",
    "conflict",
    "rate_limited",
    "oauth_unavailable",
    "server_error",
}


class ErrorBody(BaseModel):
    """Error envelope body with stable code values."""

    code: str
    message: str
    details: Optional[Any] = None

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _VALID_ERROR_CODES:
            raise ValueError(
                f"Invalid error code '{value}'. Must be one of: {', '.join(sorted(_VALID_ERROR_CODES))}"
            )
        return value


class Envelope(BaseModel):
    status: str = Field(..., pattern="^(ok|error)$")
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=lambda: get_correlation_id() or str(uuid4()))


_EMAIL_LOCAL_PART = re.compile(r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+$")
_EMAIL_DOMAIN_LABEL = re.compile(r"^[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$")


def _validate_email(value: str) -> str:
    normalized = unicodedata.normalize("NFKC", value.strip().lower())
    if len(normalized) > 254:
        raise ValueError("email address too long")
    local, sep, domain = normalized.partition("@")
    if not sep or not local or not domain or len(local) > 64:
        raise ValueError("invalid email address")
    if not _EMAIL_LOCAL_PART.match(local):
        raise ValueError("invalid email address format")
    domain_parts = domain.split(".")
    if len(domain_parts) < 2:
        raise ValueError("invalid email address format")
    for label in domain_parts:
        if len(label) > 63 or not _EMAIL_DOMAIN_LABEL.match(label):
            raise ValueError("invalid email address format")
    return normalized


def _normalize_identifier(value: str) -> str:
    # Emails are stored lowercased, so an email-shaped identifier must be too
    if "@" in value:
        return unicodedata.normalize("NFKC", value.lower())
    return value


class _StrictRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


class RegisterRequest(_StrictRequest):
    email: str
    name: str = Field(..., min_length=1, max_length=256)
    password: str = Field(..., min_length=6, max_length=128)
    username: Optional[str] = Field(default=None, min_length=3, max_length=256)

    @field_validator("email")
    @classmethod
    def _validate_register_email(cls, value: str) -> str:
        return _validate_email(value)


class LoginRequest(_StrictRequest):
    identifier: str = Field(..., min_length=3, max_length=100)
    password: str = Field(..., min_length=1, max_length=128)

    @field_validator("identifier")
    @classmethod
    def _normalize_login_identifier(cls, value: str) -> str:
        return _normalize_identifier(value)


class UpdateUserRequest(_StrictRequest):
    """Fields a signed-in user may change; anything else is rejected."""

    name: Optional[str] = Field(default=None, min_length=1, max_length=256)
    username: Optional[str] = Field(default=None, min_length=3, max_length=256)
    password: Optional[str] = Field(default=None, min_length=6, max_length=128)


class ResendVerificationRequest(_StrictRequest):
    identifier: str = Field(..., min_length=3, max_length=100)

    @field_validator("identifier")
    @classmethod
    def _normalize_resend_identifier(cls, value: str) -> str:
        return _normalize_identifier(value)


class UserResponse(BaseModel):
    id: str
    email: str
    name: str
    username: Optional[str] = None
    created_at: Optional[datetime] = None


class CsrfTokenResponse(BaseModel):
    csrfToken: str


class MessageResponse(BaseModel):
    message: str


class LogoutAllResponse(BaseModel):
    revoked: int
