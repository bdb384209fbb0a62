from __future__ import annotations

import os
import time
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional


def new_user_id() -> str:
    """Return a 24-hex identifier: 4 bytes of epoch seconds plus 8 random bytes."""

    return int(time.time()).to_bytes(4, "big").hex() + os.urandom(8).hex()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class User:
    id: str
    email: str
    name: str
    password_hash: str = ""
    username: Optional[str] = None
    is_verified: bool = False
    is_deleted: bool = False
    created_at: datetime = field(default_factory=_utcnow)

    @property
    def is_active(self) -> bool:
        return self.is_verified and not self.is_deleted

    @property
    def has_local_password(self) -> bool:
        return bool(self.password_hash)


@dataclass
class PublicUser:
    id: str
    email: str
    name: str
    username: Optional[str] = None
    created_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        if self.created_at is not None:
            data["created_at"] = self.created_at.isoformat()
        return data


_PUBLIC_FIELDS = tuple(f.name for f in fields(PublicUser))


def user_to_public_user(user: User) -> PublicUser:
    """Project a stored user onto the fields that are safe to return to callers."""

    return PublicUser(**{name: getattr(user, name) for name in _PUBLIC_FIELDS})


@dataclass
class NewUser:
    email: str
    name: str
    password_hash: str
    username: Optional[str] = None
    is_verified: bool = False


@dataclass
class UserUpdate:
    """Profile fields a user may change about themselves.

    Email, verification and deletion state are deliberately absent.
    """

    name: Optional[str] = None
    username: Optional[str] = None
    password_hash: Optional[str] = None

    def changes(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass
class SessionData:
    """Server-side session record stored under ``sess:{session_id}``.

    Serialised in the same JSON layout the Node session middleware writes so
    both services can share one Redis cluster.
    """

    max_age_ms: int
    expires: datetime
    http_only: bool = True
    secure: bool = False
    same_site: str = "lax"
    path: str = "/"
    user_id: Optional[str] = None
    last_renewed: Optional[int] = None
    csrf_secret: Optional[str] = None

    @classmethod
    def new(cls, max_age_seconds: int, *, secure: bool = False) -> "SessionData":
        return cls(
            max_age_ms=max_age_seconds * 1000,
            expires=_utcnow() + timedelta(seconds=max_age_seconds),
            secure=secure,
        )

    def reset_expiry(self) -> None:
        self.expires = _utcnow() + timedelta(milliseconds=self.max_age_ms)

    def to_json_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "cookie": {
                "originalMaxAge": self.max_age_ms,
                "expires": self.expires.strftime("%Y-%m-%dT%H:%M:%S.")
                + f"{self.expires.microsecond // 1000:03d}Z",
                "secure": self.secure,
                "httpOnly": self.http_only,
                "path": self.path,
                "sameSite": self.same_site,
            }
        }
        if self.user_id:
            payload["userId"] = self.user_id
            payload["passport"] = {"user": self.user_id}
        if self.last_renewed is not None:
            payload["lastRenewed"] = self.last_renewed
        if self.csrf_secret:
            payload["csrfSecret"] = self.csrf_secret
        return payload

    @classmethod
    def from_json_dict(cls, payload: Dict[str, Any]) -> "SessionData":
        cookie = payload.get("cookie") or {}
        raw_expires = cookie.get("expires")
        if raw_expires:
            expires = datetime.fromisoformat(raw_expires.replace("Z", "+00:00"))
        else:
            expires = _utcnow()
        passport = payload.get("passport") or {}
        return cls(
            max_age_ms=int(cookie.get("originalMaxAge") or 0),
            expires=expires,
            http_only=bool(cookie.get("httpOnly", True)),
            secure=bool(cookie.get("secure", False)),
            same_site=str(cookie.get("sameSite") or "lax"),
            path=str(cookie.get("path") or "/"),
            user_id=payload.get("userId") or passport.get("user"),
            last_renewed=payload.get("lastRenewed"),
            csrf_secret=payload.get("csrfSecret"),
        )
