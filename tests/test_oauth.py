from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from sessionauth.service.errors import AuthenticationError, ServiceError
from sessionauth.service.oauth import (
    GOOGLE_TOKEN_URL,
    GOOGLE_USERINFO_URL,
    GoogleOAuthClient,
)


def _transport(userinfo, token_status=200):
    def handler(request: httpx.Request) -> httpx.Response:
        if str(request.url) == GOOGLE_TOKEN_URL:
            body = parse_qs(request.content.decode())
            assert body["code"] == ["auth-code"]
            assert body["grant_type"] == ["authorization_code"]
            return httpx.Response(token_status, json={"access_token": "at"})
        if str(request.url) == GOOGLE_USERINFO_URL:
            assert request.headers["Authorization"] == "Bearer at"
            return httpx.Response(200, json=userinfo)
        return httpx.Response(404)

    return httpx.MockTransport(handler)


def _client(cache, transport=None, client_id="cid"):
    return GoogleOAuthClient(
        cache,
        client_id=client_id,
        client_secret="csecret" if client_id else None,
        redirect_uri="http://auth.test/auth/google/redirect",
        transport=transport,
    )


async def _state_from(client):
    url = await client.authorization_url()
    query = parse_qs(urlparse(url).query)
    assert query["redirect_uri"] == ["http://auth.test/auth/google/redirect"]
    assert query["scope"] == ["email profile"]
    return query["state"][0]


async def test_full_exchange_returns_identity(cache):
    client = _client(cache, _transport({"email": "g@example.com", "name": "Gee"}))
    state = await _state_from(client)

    identity = await client.complete(state, "auth-code")

    assert (identity.provider, identity.email, identity.name) == ("google", "g@example.com", "Gee")


async def test_state_is_single_use(cache):
    client = _client(cache, _transport({"email": "g@example.com", "name": "Gee"}))
    state = await _state_from(client)
    await client.complete(state, "auth-code")

    with pytest.raises(AuthenticationError):
        await client.complete(state, "auth-code")


async def test_unknown_state_rejected(cache):
    client = _client(cache, _transport({"email": "g@example.com"}))

    with pytest.raises(AuthenticationError):
        await client.complete("forged", "auth-code")


async def test_token_endpoint_error(cache):
    client = _client(cache, _transport({"email": "g@example.com"}, token_status=400))
    state = await _state_from(client)

    with pytest.raises(AuthenticationError):
        await client.complete(state, "auth-code")


async def test_missing_email_rejected(cache):
    client = _client(cache, _transport({"name": "No Mail"}))
    state = await _state_from(client)

    with pytest.raises(AuthenticationError):
        await client.complete(state, "auth-code")


async def test_name_falls_back_to_given_and_family(cache):
    client = _client(
        cache, _transport({"email": "g@example.com", "given_name": "Gee", "family_name": "Oogle"})
    )
    state = await _state_from(client)

    identity = await client.complete(state, "auth-code")

    assert identity.name == "Gee Oogle"


async def test_unconfigured_provider(cache):
    client = _client(cache, client_id=None)

    with pytest.raises(ServiceError) as excinfo:
        await client.authorization_url()
    assert excinfo.value.status_code == 503
