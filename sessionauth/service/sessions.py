from __future__ import annotations

import base64
import hashlib
import hmac
import json
import secrets
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import quote, unquote

from sessionauth.logging import get_logger
from sessionauth.storage.models import SessionData
from sessionauth.storage.redis_cache import KeyValueCache

logger = get_logger(__name__)

SESSION_PREFIX = "sess:"
USER_SESSIONS_PREFIX = "user-sessions:"


def session_key(session_id: str) -> str:
    return f"{SESSION_PREFIX}{session_id}"


def user_sessions_key(user_id: str) -> str:
    return f"{USER_SESSIONS_PREFIX}{user_id}"


def new_session_id() -> str:
    return secrets.token_urlsafe(24)


def _signature(value: str, secret: str) -> str:
    digest = hmac.new(secret.encode(), value.encode(), hashlib.sha256).digest()
    return base64.b64encode(digest).decode("utf-8").rstrip("=")


def sign_session_id(session_id: str, secret: str) -> str:
    """Return the cookie value for ``session_id``: ``s:<id>.<hmac>``, URL-encoded."""

    return quote(f"s:{session_id}.{_signature(session_id, secret)}", safe="")


def unsign_session_id(cookie_value: Optional[str], secret: str) -> Optional[str]:
    if not cookie_value:
        return None
    raw = unquote(cookie_value)
    if not raw.startswith("s:") or "." not in raw:
        return None
    session_id, _, signature = raw[2:].rpartition(".")
    if not session_id or not hmac.compare_digest(signature.encode(), _signature(session_id, secret).encode()):
        return None
    return session_id


class SessionStore:
    """Session records kept as JSON under ``sess:{session_id}``."""

    def __init__(self, cache: KeyValueCache, *, default_ttl_seconds: int = 86400) -> None:
        self.cache = cache
        self.default_ttl_seconds = default_ttl_seconds

    def _ttl(self, data: SessionData) -> int:
        remaining = int((data.expires - datetime.now(timezone.utc)).total_seconds())
        return remaining if remaining > 0 else self.default_ttl_seconds

    async def get(self, session_id: str) -> Optional[SessionData]:
        raw = await self.cache.get(session_key(session_id))
        if raw is None:
            return None
        try:
            return SessionData.from_json_dict(json.loads(raw))
        except (ValueError, TypeError) as exc:
            logger.warning("session_record_unreadable", error=str(exc))
            return None

    async def set(self, session_id: str, data: SessionData) -> None:
        await self.cache.set(
            session_key(session_id),
            json.dumps(data.to_json_dict(), separators=(",", ":")),
            self._ttl(data),
        )

    async def touch(self, session_id: str, data: SessionData) -> None:
        await self.cache.expire(session_key(session_id), self._ttl(data))

    async def destroy(self, session_id: str) -> None:
        await self.cache.delete(session_key(session_id))


class SessionCarrier:
    """The per-request session handle.

    Tracks whether the record changed so the HTTP layer only writes back
    sessions that were modified, and clears the cookie once destroyed.
    """

    def __init__(
        self,
        store: SessionStore,
        session_id: str,
        data: SessionData,
        *,
        is_new: bool,
    ) -> None:
        self.store = store
        self._session_id = session_id
        self.data = data
        self.is_new = is_new
        self.modified = False
        self.destroyed = False

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def user_id(self) -> Optional[str]:
        return self.data.user_id

    @user_id.setter
    def user_id(self, value: Optional[str]) -> None:
        self.data.user_id = value
        self.modified = True

    @property
    def last_renewed(self) -> Optional[int]:
        return self.data.last_renewed

    @last_renewed.setter
    def last_renewed(self, value: Optional[int]) -> None:
        self.data.last_renewed = value
        self.modified = True

    @property
    def csrf_secret(self) -> Optional[str]:
        return self.data.csrf_secret

    def ensure_csrf_secret(self) -> str:
        if not self.data.csrf_secret:
            self.data.csrf_secret = secrets.token_urlsafe(32)
            self.modified = True
        return self.data.csrf_secret

    async def touch(self) -> None:
        """Reset the expiry window on both the record and the cookie."""

        self.data.reset_expiry()
        if not self.is_new:
            await self.store.touch(self._session_id, self.data)

    async def save(self) -> None:
        await self.store.set(self._session_id, self.data)
        self.is_new = False
        self.modified = False

    async def destroy(self) -> None:
        await self.store.destroy(self._session_id)
        self.destroyed = True

    async def regenerate(self) -> None:
        """Swap in a fresh session id, dropping the old record.

        The CSRF secret survives so a token fetched before login stays valid.
        """

        if not self.is_new:
            await self.store.destroy(self._session_id)
        csrf_secret = self.data.csrf_secret
        self._session_id = new_session_id()
        self.data = SessionData.new(self.data.max_age_ms // 1000, secure=self.data.secure)
        self.data.csrf_secret = csrf_secret
        self.is_new = True
        self.modified = True
        self.destroyed = False


class SessionRegistry:
    """Tracks the live session ids of each user in ``user-sessions:{userId}``."""

    def __init__(self, cache: KeyValueCache) -> None:
        self.cache = cache
        self.logger = get_logger(__name__)

    async def add_session(self, user_id: str, session_id: str) -> None:
        await self.cache.sadd(user_sessions_key(user_id), session_id)

    async def remove_session(self, user_id: str, session_id: str) -> None:
        await self.cache.srem(user_sessions_key(user_id), session_id)

    async def logout_all(self, user_id: str) -> int:
        """Destroy every session recorded for ``user_id`` and the index itself.

        A session registered between the read and the batched delete survives;
        it is removed by the next logout or expires with its TTL.
        """

        session_ids = await self.cache.smembers(user_sessions_key(user_id))
        if not session_ids:
            return 0
        keys = [session_key(sid) for sid in sorted(session_ids)]
        keys.append(user_sessions_key(user_id))
        await self.cache.delete_many(keys)
        self.logger.info("logout_all_completed", user_id=user_id, sessions=len(session_ids))
        return len(session_ids)
