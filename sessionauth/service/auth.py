from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from sessionauth.logging import get_logger
from sessionauth.service.errors import AuthenticationError, ForbiddenError, NotFoundError
from sessionauth.service.passwords import PasswordHashing
from sessionauth.service.renewal import now_millis
from sessionauth.service.sessions import SessionCarrier, SessionRegistry
from sessionauth.service.users import UserStore
from sessionauth.service.verification import VerificationTokenManager
from sessionauth.storage.errors import ConstraintViolation
from sessionauth.storage.models import NewUser, PublicUser, User, user_to_public_user


@dataclass(frozen=True)
class SessionEstablished:
    """Outcome of a successful login, written into the session by the caller."""

    user_id: str
    established_at: int


class AuthService:
    """Credential checks and the session lifecycle around them."""

    def __init__(
        self,
        store: UserStore,
        tokens: VerificationTokenManager,
        registry: SessionRegistry,
        passwords: PasswordHashing,
        *,
        unverified_token_ttl_seconds: int = 3600,
    ) -> None:
        self.store = store
        self.tokens = tokens
        self.registry = registry
        self.passwords = passwords
        self.unverified_token_ttl_seconds = unverified_token_ttl_seconds
        self.logger = get_logger(__name__)

    async def verify_login_credentials(self, identifier: str, password: str) -> User:
        user = self.store.find_user_by_identifier(identifier)
        if not user or user.is_deleted:
            self.logger.warning("login_failed_unknown_identifier")
            raise NotFoundError("User not found")

        if not user.is_verified:
            # A fresh token lets the client offer "resend" without another lookup
            await self.tokens.issue(user.id, self.unverified_token_ttl_seconds)
            self.logger.warning("login_failed_unverified", user_id=user.id)
            raise ForbiddenError("please verify your email before logging in")

        if not user.has_local_password:
            self.logger.warning("login_failed_no_local_password", user_id=user.id)
            raise AuthenticationError("Invalid credentials")

        if not self.passwords.verify(user.password_hash, password):
            self.logger.warning("login_failed_bad_password", user_id=user.id)
            raise AuthenticationError("Invalid credentials")

        self.logger.info("login_verified", user_id=user.id)
        return user

    def establish_session(self, user_id: str, now: Optional[int] = None) -> SessionEstablished:
        return SessionEstablished(
            user_id=user_id, established_at=now_millis() if now is None else now
        )

    async def start_session(
        self, carrier: SessionCarrier, established: SessionEstablished
    ) -> None:
        """Bind ``established`` to a fresh session id, persist it and index it.

        If indexing fails the new session is destroyed so no untracked
        session outlives the failed login.
        """

        await carrier.regenerate()
        carrier.user_id = established.user_id
        carrier.last_renewed = established.established_at
        await carrier.save()
        try:
            await self.registry.add_session(established.user_id, carrier.session_id)
        except Exception:
            self.logger.error(
                "session_registration_failed",
                user_id=established.user_id,
                session_id=carrier.session_id,
            )
            await carrier.destroy()
            raise
        self.logger.info(
            "session_established", user_id=established.user_id, session_id=carrier.session_id
        )

    async def login(self, carrier: SessionCarrier, identifier: str, password: str) -> PublicUser:
        user = await self.verify_login_credentials(identifier, password)
        await self.start_session(carrier, self.establish_session(user.id))
        return user_to_public_user(user)

    async def logout(self, carrier: SessionCarrier) -> None:
        user_id = carrier.user_id
        if user_id:
            await self.registry.remove_session(user_id, carrier.session_id)
        session_id = carrier.session_id
        await carrier.destroy()
        self.logger.info("logout_completed", user_id=user_id, session_id=session_id)

    async def logout_all(self, user_id: str) -> int:
        return await self.registry.logout_all(user_id)

    def create_user_from_provider(self, email: str, name: str, provider: str) -> PublicUser:
        email = email.strip().lower()
        existing = self.store.find_user_by_identifier(email)
        if existing:
            return self._provider_login_target(existing, provider)

        try:
            user_id = self.store.create_user(
                NewUser(email=email, name=name, password_hash="", is_verified=True)
            )
        except ConstraintViolation:
            # Lost a race with a concurrent first login; use the winner's record
            winner = self.store.find_user_by_identifier(email)
            if not winner:
                raise
            return self._provider_login_target(winner, provider)

        created = self.store.get_user(user_id)
        if not created:
            raise NotFoundError("User not found")
        self.logger.info("provider_user_created", user_id=user_id, provider=provider)
        return user_to_public_user(created)

    def _provider_login_target(self, user: User, provider: str) -> PublicUser:
        if user.is_deleted:
            self.logger.warning("provider_login_deleted_user", user_id=user.id, provider=provider)
            raise NotFoundError("User not found")
        return user_to_public_user(user)

    def get_user(self, user_id: str) -> PublicUser:
        user = self.store.get_user(user_id)
        if not user or not user.is_active:
            raise NotFoundError("User not found")
        return user_to_public_user(user)
