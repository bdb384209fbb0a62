from __future__ import annotations

import json
import secrets
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlencode

import httpx

from sessionauth.logging import get_logger
from sessionauth.service.errors import AuthenticationError, ServiceError
from sessionauth.storage.redis_cache import KeyValueCache

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"
GOOGLE_SCOPE = "email profile"

OAUTH_STATE_PREFIX = "oauth-state:"
OAUTH_STATE_TTL_SECONDS = 600


@dataclass(frozen=True)
class ProviderIdentity:
    provider: str
    email: str
    name: str


class GoogleOAuthClient:
    """Authorization-code flow against Google, with state kept in the cache."""

    provider = "google"

    def __init__(
        self,
        cache: KeyValueCache,
        *,
        client_id: Optional[str],
        client_secret: Optional[str],
        redirect_uri: str,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.cache = cache
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.transport = transport
        self.logger = get_logger(__name__)

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def _require_configured(self) -> None:
        if not self.is_configured:
            self.logger.warning("oauth_not_configured", provider=self.provider)
            raise ServiceError(
                "Google sign-in is not configured",
                status_code=503,
                error_code="oauth_unavailable",
            )

    async def authorization_url(self) -> str:
        self._require_configured()
        state = secrets.token_urlsafe(24)
        await self.cache.set(f"{OAUTH_STATE_PREFIX}{state}", self.provider, OAUTH_STATE_TTL_SECONDS)
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": GOOGLE_SCOPE,
            "state": state,
        }
        return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"

    async def complete(self, state: Optional[str], code: Optional[str]) -> ProviderIdentity:
        self._require_configured()
        if not state or not code:
            raise AuthenticationError("Missing OAuth state or code")
        stored = await self.cache.getdel(f"{OAUTH_STATE_PREFIX}{state}")
        if stored != self.provider:
            self.logger.warning("oauth_state_invalid", provider=self.provider)
            raise AuthenticationError("Invalid OAuth state")

        try:
            async with httpx.AsyncClient(
                timeout=30.0, follow_redirects=False, transport=self.transport
            ) as client:
                token_response = await client.post(
                    GOOGLE_TOKEN_URL,
                    data={
                        "client_id": self.client_id,
                        "client_secret": self.client_secret,
                        "code": code,
                        "redirect_uri": self.redirect_uri,
                        "grant_type": "authorization_code",
                    },
                    headers={"Accept": "application/json"},
                )
                token_response.raise_for_status()
                access_token = token_response.json().get("access_token")
                if not access_token:
                    self.logger.error("oauth_no_access_token", provider=self.provider)
                    raise AuthenticationError("OAuth exchange failed")

                userinfo_response = await client.get(
                    GOOGLE_USERINFO_URL,
                    headers={"Authorization": f"Bearer {access_token}"},
                )
                userinfo_response.raise_for_status()
                userinfo = userinfo_response.json()
        except httpx.HTTPStatusError as exc:
            self.logger.error(
                "oauth_exchange_http_error",
                provider=self.provider,
                status=exc.response.status_code,
            )
            raise AuthenticationError("OAuth exchange failed") from exc
        except (httpx.HTTPError, json.JSONDecodeError) as exc:
            self.logger.error("oauth_exchange_error", provider=self.provider, error=str(exc))
            raise AuthenticationError("OAuth exchange failed") from exc

        email = userinfo.get("email") if isinstance(userinfo, dict) else None
        if not email:
            self.logger.error("oauth_identity_missing_email", provider=self.provider)
            raise AuthenticationError("OAuth account has no email")
        name = (
            userinfo.get("name")
            or " ".join(p for p in (userinfo.get("given_name"), userinfo.get("family_name")) if p)
            or email.split("@", 1)[0]
        )
        self.logger.info("oauth_exchange_success", provider=self.provider)
        return ProviderIdentity(provider=self.provider, email=email, name=name)
