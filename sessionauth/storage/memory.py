from __future__ import annotations

import threading
from dataclasses import replace
from typing import Dict, Optional

from sessionauth.logging import get_logger
from sessionauth.storage.errors import ConstraintViolation
from sessionauth.storage.models import NewUser, User, UserUpdate, new_user_id


class MemoryStore:
    """In-memory user store used for tests and local development."""

    def __init__(self) -> None:
        self.logger = get_logger(__name__)
        self.users: Dict[str, User] = {}
        self._data_lock = threading.RLock()

    def verify_connection(self) -> None:
        return None

    def _check_unique(
        self, *, email: Optional[str], username: Optional[str], exclude_id: Optional[str] = None
    ) -> None:
        for existing in self.users.values():
            if existing.id == exclude_id:
                continue
            if email is not None and existing.email == email:
                raise ConstraintViolation("email already exists", {"field": "email"})
            if username and existing.username == username:
                raise ConstraintViolation("username already exists", {"field": "username"})

    def find_user_by_identifier(self, identifier: str) -> Optional[User]:
        with self._data_lock:
            if identifier in self.users:
                return replace(self.users[identifier])
            for attr in ("email", "username"):
                match = next(
                    (u for u in self.users.values() if getattr(u, attr) == identifier),
                    None,
                )
                if match:
                    return replace(match)
            return None

    def get_user(self, user_id: str) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            return replace(user) if user else None

    def create_user(self, new_user: NewUser) -> str:
        with self._data_lock:
            self._check_unique(email=new_user.email, username=new_user.username)
            user = User(
                id=new_user_id(),
                email=new_user.email,
                name=new_user.name,
                username=new_user.username,
                password_hash=new_user.password_hash,
                is_verified=new_user.is_verified,
            )
            self.users[user.id] = user
            return user.id

    def update_user(self, user_id: str, update: UserUpdate) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return None
            changes = update.changes()
            if "username" in changes:
                self._check_unique(email=None, username=changes["username"], exclude_id=user_id)
            updated = replace(user, **changes)
            self.users[user_id] = updated
            return replace(updated)

    def verify_user(self, user_id: str) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return None
            user.is_verified = True
            return replace(user)

    def delete_user(self, user_id: str) -> bool:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return False
            user.is_deleted = True
            return True
