"""Tests for single-use verification tokens and the resend rate limit."""

from unittest.mock import AsyncMock

import pytest

from sessionauth.service.errors import (
    AlreadyVerifiedError,
    NotFoundError,
    RateLimitedError,
    TokenExpiredError,
)
from sessionauth.service.verification import resend_limit_key, verify_token_key


async def test_issue_stores_identifier_with_ttl(tokens, cache):
    token = await tokens.issue("user-1", 7200)

    assert len(token) == 64
    assert int(token, 16) >= 0
    assert await cache.get(verify_token_key(token)) == "user-1"
    assert 7190 <= await cache.ttl(verify_token_key(token)) <= 7200


async def test_issue_defaults_to_one_hour(tokens, cache):
    token = await tokens.issue("user-1")
    assert 3590 <= await cache.ttl(verify_token_key(token)) <= 3600


async def test_redeem_is_single_use(tokens):
    token = await tokens.issue("user-1")

    assert await tokens.redeem(token) == "user-1"
    with pytest.raises(TokenExpiredError):
        await tokens.redeem(token)


async def test_redeem_unknown_token(tokens):
    with pytest.raises(TokenExpiredError) as excinfo:
        await tokens.redeem("deadbeef")
    assert excinfo.value.status_code == 400


async def test_resend_unknown_user(tokens):
    with pytest.raises(NotFoundError):
        await tokens.resend("ghost@example.com")


async def test_resend_already_verified(tokens, make_user, cache):
    make_user(verified=True)

    with pytest.raises(AlreadyVerifiedError):
        await tokens.resend("alice@example.com")
    assert not any(key.startswith("resend-limit:") for key in cache._data)


async def test_resend_allows_three_then_rate_limits(tokens, make_user, cache):
    user = make_user(verified=False)

    issued = [await tokens.resend(user.email) for _ in range(3)]
    assert len(set(issued)) == 3
    for token in issued:
        assert await cache.get(verify_token_key(token)) == user.id

    before = {k for k in cache._data if k.startswith("verify-token:")}
    with pytest.raises(RateLimitedError) as excinfo:
        await tokens.resend(user.email)
    after = {k for k in cache._data if k.startswith("verify-token:")}

    assert excinfo.value.status_code == 429
    assert excinfo.value.retry_after == 3600
    assert excinfo.value.message == "Too many resend attempts. Try again after 1 hour."
    assert before == after
    assert await cache.get(resend_limit_key(user.id)) == "4"


async def test_resend_window_set_only_on_first_attempt(tokens, make_user, cache):
    user = make_user(verified=False)
    cache.expire = AsyncMock(wraps=cache.expire)

    await tokens.resend(user.email)
    await tokens.resend(user.email)

    cache.expire.assert_awaited_once_with(resend_limit_key(user.id), 3600)
    assert 3590 <= await cache.ttl(resend_limit_key(user.id)) <= 3600


async def test_resend_token_resolves_to_user_id(tokens, make_user):
    user = make_user(username="alice", verified=False)

    token = await tokens.resend("alice")

    assert await tokens.redeem(token) == user.id


async def test_resend_for_deleted_account(tokens, make_user, memory_store, cache):
    user = make_user(verified=False)
    memory_store.delete_user(user.id)

    with pytest.raises(NotFoundError):
        await tokens.resend(user.email)
    assert await cache.get(resend_limit_key(user.id)) is None
