from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    The base class answers 400 ``validation_error``; subclasses fix their own
    ``status_code`` and stable ``error_code``:
    - already_verified (400)
    - token_expired (400)
    - unauthorized (401)
    - forbidden (403)
    - not_found (404)
    - conflict (409)
    - rate_limited (429)
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class AlreadyVerifiedError(ServiceError):
    """Verification requested for an account that is already verified (400)."""
    status_code = 400
    error_code = "already_verified"


class TokenExpiredError(ServiceError):
    """Verification token is unknown, expired or already redeemed (400)."""
    status_code = 400
    error_code = "token_expired"


class AuthenticationError(ServiceError):
    """Authentication failed or missing (401)."""
    status_code = 401
    error_code = "unauthorized"


class ForbiddenError(ServiceError):
    """Access denied (403)."""
    status_code = 403
    error_code = "forbidden"


class NotFoundError(ServiceError):
    """Requested resource not found (404)."""
    status_code = 404
    error_code = "not_found"


class ConflictError(ServiceError):
    """Resource conflict, e.g., duplicate creation (409)."""
    status_code = 409
    error_code = "conflict"


class RateLimitedError(ServiceError):
    """Rate limit exceeded (429)."""
    status_code = 429
    error_code = "rate_limited"

    @property
    def retry_after(self) -> Optional[int]:
        value = self.detail.get("retry_after")
        return int(value) if value is not None else None


__all__ = [
    "ServiceError",
    "AlreadyVerifiedError",
    "TokenExpiredError",
    "AuthenticationError",
    "ForbiddenError",
    "NotFoundError",
    "ConflictError",
    "RateLimitedError",
]
