from __future__ import annotations

import asyncio
import threading
from typing import Optional, Union
from urllib.parse import urlparse, urlunparse

from sessionauth.config import get_settings, reset_settings_cache
from sessionauth.logging import get_logger
from sessionauth.service.auth import AuthService
from sessionauth.service.email import EmailService
from sessionauth.service.oauth import GoogleOAuthClient
from sessionauth.service.passwords import PasswordHashing
from sessionauth.service.renewal import SessionRenewalPolicy
from sessionauth.service.sessions import SessionRegistry, SessionStore
from sessionauth.service.users import UserService
from sessionauth.service.verification import VerificationTokenManager
from sessionauth.storage.memory import MemoryStore
from sessionauth.storage.postgres import PostgresStore
from sessionauth.storage.redis_cache import MemoryCache, RedisCache

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Replace the password component of ``url`` with ``***`` for logging."""
    if not url:
        return url
    parsed = urlparse(url)
    if not parsed.password:
        return url
    netloc = parsed.hostname or ""
    if parsed.port:
        netloc = f"{netloc}:{parsed.port}"
    netloc = f"{parsed.username or ''}:***@{netloc}"
    return urlunparse(parsed._replace(netloc=netloc))


class Runtime:
    """Holds singleton service instances for the FastAPI app."""

    def __init__(self):
        self.settings = get_settings()
        logger.info(
            "runtime_init_started",
            use_memory_store=self.settings.use_memory_store,
            test_mode=self.settings.test_mode,
        )

        store_type = "memory" if self.settings.use_memory_store else "postgres"
        try:
            self.store: Union[MemoryStore, PostgresStore] = (
                MemoryStore()
                if self.settings.use_memory_store
                else PostgresStore(self.settings.database_url)
            )
            logger.info("runtime_store_initialized", store_type=store_type)
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                store_type=store_type,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise

        self.cache: Union[RedisCache, MemoryCache]
        if self.settings.test_mode:
            self.cache = MemoryCache()
        else:
            try:
                cache = RedisCache(self.settings.redis_url)
                cache.verify_connection()
                self.cache = cache
            except Exception as exc:
                if not self.settings.allow_redis_fallback_dev:
                    raise RuntimeError(
                        "Redis is required for sessions and verification tokens; "
                        "start Redis or set TEST_MODE=true/ALLOW_REDIS_FALLBACK_DEV=true for local fallback."
                    ) from exc
                logger.warning(
                    "redis_disabled_fallback",
                    redis_url=_mask_url_password(self.settings.redis_url),
                    error=str(exc),
                    message="Sessions and tokens are in-memory only and lost on restart.",
                )
                self.cache = MemoryCache()

        self.passwords = PasswordHashing()
        self.sessions = SessionStore(
            self.cache, default_ttl_seconds=self.settings.session_max_age_seconds
        )
        self.registry = SessionRegistry(self.cache)
        self.renewal = SessionRenewalPolicy(self.settings.session_renewal_threshold_seconds)
        self.tokens = VerificationTokenManager(
            self.cache,
            self.store.find_user_by_identifier,
            default_ttl_seconds=self.settings.verify_token_ttl_seconds,
            resend_limit=self.settings.resend_limit,
            resend_window_seconds=self.settings.resend_window_seconds,
        )
        self.email = EmailService(
            smtp_host=self.settings.smtp_host,
            smtp_port=self.settings.smtp_port,
            smtp_user=self.settings.smtp_user,
            smtp_password=self.settings.smtp_password,
            smtp_use_tls=self.settings.smtp_use_tls,
            from_email=self.settings.smtp_from,
        )
        self.auth = AuthService(
            self.store,
            self.tokens,
            self.registry,
            self.passwords,
            unverified_token_ttl_seconds=self.settings.verify_token_ttl_seconds,
        )
        self.users = UserService(
            self.store,
            self.tokens,
            self.registry,
            self.email,
            self.passwords,
            app_base_url=self.settings.app_base_url,
            registration_token_ttl_seconds=self.settings.registration_token_ttl_seconds,
        )
        self.oauth = GoogleOAuthClient(
            self.cache,
            client_id=self.settings.google_client_id,
            client_secret=self.settings.google_client_secret,
            redirect_uri=self.settings.google_redirect_uri,
        )

        logger.info(
            "runtime_initialized",
            store_type=store_type,
            redis_enabled=isinstance(self.cache, RedisCache),
            email_configured=self.email.is_configured,
            google_configured=self.oauth.is_configured,
        )

    async def close(self) -> None:
        await self.cache.close()
        if isinstance(self.store, PostgresStore):
            self.store.close()


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton, double-checked under a lock."""
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Reinitialize the runtime singleton for isolated test runs."""

    global runtime

    with _runtime_lock:
        if runtime is not None and isinstance(runtime.cache, RedisCache):
            try:
                loop = asyncio.get_running_loop()
                loop.create_task(runtime.cache.close())
            except RuntimeError:
                asyncio.run(runtime.cache.close())

        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        runtime = Runtime()
        return runtime
