from __future__ import annotations

import secrets
from typing import Callable, Optional

from sessionauth.logging import get_logger
from sessionauth.service.errors import (
    AlreadyVerifiedError,
    NotFoundError,
    RateLimitedError,
    TokenExpiredError,
)
from sessionauth.storage.models import User
from sessionauth.storage.redis_cache import KeyValueCache

VERIFY_TOKEN_PREFIX = "verify-token:"
RESEND_LIMIT_PREFIX = "resend-limit:"


def verify_token_key(token: str) -> str:
    return f"{VERIFY_TOKEN_PREFIX}{token}"


def resend_limit_key(user_id: str) -> str:
    return f"{RESEND_LIMIT_PREFIX}{user_id}"


class VerificationTokenManager:
    """Issues, redeems and re-issues single-use email verification tokens."""

    def __init__(
        self,
        cache: KeyValueCache,
        find_user: Callable[[str], Optional[User]],
        *,
        default_ttl_seconds: int = 3600,
        resend_limit: int = 3,
        resend_window_seconds: int = 3600,
    ) -> None:
        self.cache = cache
        self.find_user = find_user
        self.default_ttl_seconds = default_ttl_seconds
        self.resend_limit = resend_limit
        self.resend_window_seconds = resend_window_seconds
        self.logger = get_logger(__name__)

    async def issue(self, identifier: str, ttl_seconds: Optional[int] = None) -> str:
        token = secrets.token_hex(32)
        await self.cache.set(
            verify_token_key(token), identifier, ttl_seconds or self.default_ttl_seconds
        )
        self.logger.info("verification_token_issued", ttl=ttl_seconds or self.default_ttl_seconds)
        return token

    async def redeem(self, token: str) -> str:
        """Consume ``token`` and return the identifier it was bound to.

        GETDEL makes the read and the delete one step, so two concurrent
        redemptions cannot both succeed.
        """

        identifier = await self.cache.getdel(verify_token_key(token))
        if identifier is None:
            raise TokenExpiredError("Token expired")
        return identifier

    async def resend(self, identifier: str) -> str:
        user = self.find_user(identifier)
        if not user or user.is_deleted:
            raise NotFoundError("User not found")
        if user.is_verified:
            raise AlreadyVerifiedError("User already verified")

        key = resend_limit_key(user.id)
        attempts = await self.cache.incr(key)
        if attempts == 1:
            await self.cache.expire(key, self.resend_window_seconds)
        if attempts > self.resend_limit:
            self.logger.warning("verification_resend_rate_limited", user_id=user.id, attempts=attempts)
            raise RateLimitedError(
                "Too many resend attempts. Try again after 1 hour.",
                detail={"retry_after": self.resend_window_seconds},
            )
        return await self.issue(user.id, self.default_ttl_seconds)
