from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional, Protocol

from sessionauth.logging import get_logger
from sessionauth.service.email import EmailService
from sessionauth.service.errors import ConflictError, NotFoundError
from sessionauth.service.passwords import PasswordHashing
from sessionauth.service.sessions import SessionRegistry
from sessionauth.service.verification import VerificationTokenManager
from sessionauth.storage.errors import ConstraintViolation
from sessionauth.storage.models import (
    NewUser,
    PublicUser,
    User,
    UserUpdate,
    user_to_public_user,
)

VERIFY_SUBJECT = "please verify your email"


class UserStore(Protocol):
    def find_user_by_identifier(self, identifier: str) -> Optional[User]: ...

    def get_user(self, user_id: str) -> Optional[User]: ...

    def create_user(self, new_user: NewUser) -> str: ...

    def update_user(self, user_id: str, update: UserUpdate) -> Optional[User]: ...

    def verify_user(self, user_id: str) -> Optional[User]: ...

    def delete_user(self, user_id: str) -> bool: ...


def _conflict_message(exc: ConstraintViolation) -> str:
    field = exc.detail.get("field", "email")
    return f"User already exists with {field}"


class UserService:
    """Registration, verification and self-service profile management."""

    def __init__(
        self,
        store: UserStore,
        tokens: VerificationTokenManager,
        registry: SessionRegistry,
        email: EmailService,
        passwords: PasswordHashing,
        *,
        app_base_url: str,
        registration_token_ttl_seconds: int = 7200,
    ) -> None:
        self.store = store
        self.tokens = tokens
        self.registry = registry
        self.email = email
        self.passwords = passwords
        self.app_base_url = app_base_url.rstrip("/")
        self.registration_token_ttl_seconds = registration_token_ttl_seconds
        self.logger = get_logger(__name__)

    def verification_url(self, token: str) -> str:
        return f"{self.app_base_url}/users/verify-user?token={token}"

    async def _send_verification(self, user_email: str, name: str, token: str) -> bool:
        return await self.email.send_mail(
            user_email,
            VERIFY_SUBJECT,
            "verify",
            {
                "name": name,
                "verification_url": self.verification_url(token),
                "year": datetime.now(timezone.utc).year,
            },
        )

    def _active_user(self, user_id: str) -> User:
        user = self.store.get_user(user_id)
        if not user or not user.is_active:
            raise NotFoundError("User not found")
        return user

    async def register(
        self,
        *,
        email: str,
        name: str,
        password: str,
        username: Optional[str] = None,
    ) -> PublicUser:
        if self.store.find_user_by_identifier(email):
            raise ConflictError("User already exists with email")
        if username and self.store.find_user_by_identifier(username):
            raise ConflictError("User already exists with username")

        try:
            user_id = self.store.create_user(
                NewUser(
                    email=email,
                    name=name,
                    username=username,
                    password_hash=self.passwords.hash(password),
                )
            )
        except ConstraintViolation as exc:
            raise ConflictError(_conflict_message(exc), detail=exc.detail) from exc

        token = await self.tokens.issue(user_id, self.registration_token_ttl_seconds)
        sent = await self._send_verification(email, name, token)
        self.logger.info("user_registered", user_id=user_id, verification_sent=sent)
        user = self.store.get_user(user_id)
        if not user:
            raise NotFoundError("User not found")
        return user_to_public_user(user)

    async def verify_user(self, token: str) -> PublicUser:
        identifier = await self.tokens.redeem(token)
        user = self.store.find_user_by_identifier(identifier)
        if not user or user.is_deleted:
            raise NotFoundError("User not found")
        verified = self.store.verify_user(user.id)
        if not verified:
            raise NotFoundError("User not found")
        self.logger.info("user_verified", user_id=user.id)
        return user_to_public_user(verified)

    async def resend_verification(self, identifier: str) -> str:
        token = await self.tokens.resend(identifier)
        user = self.store.find_user_by_identifier(identifier)
        if user:
            await self._send_verification(user.email, user.name, token)
        return token

    def get_profile(self, user_id: str) -> PublicUser:
        return user_to_public_user(self._active_user(user_id))

    def update_user(
        self,
        user_id: str,
        *,
        name: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
    ) -> PublicUser:
        self._active_user(user_id)
        update = UserUpdate(
            name=name,
            username=username,
            password_hash=self.passwords.hash(password) if password else None,
        )
        try:
            updated = self.store.update_user(user_id, update)
        except ConstraintViolation as exc:
            raise ConflictError(_conflict_message(exc), detail=exc.detail) from exc
        if not updated:
            raise NotFoundError("User not found")
        self.logger.info("user_updated", user_id=user_id, fields=sorted(update.changes()))
        return user_to_public_user(updated)

    async def delete_user(self, user_id: str) -> int:
        """Soft-delete the account and revoke every session it holds."""

        self._active_user(user_id)
        self.store.delete_user(user_id)
        revoked = await self.registry.logout_all(user_id)
        self.logger.info("user_deleted", user_id=user_id, sessions_revoked=revoked)
        return revoked
