"""Tests for the session registry, session records and cookie signing."""

import json
from unittest.mock import AsyncMock

import pytest

from sessionauth.service.auth import SessionEstablished
from sessionauth.service.sessions import (
    SessionCarrier,
    SessionStore,
    session_key,
    sign_session_id,
    unsign_session_id,
    user_sessions_key,
)
from sessionauth.storage.models import SessionData


class TestSessionRegistry:
    async def test_add_session_is_idempotent(self, registry, cache):
        await registry.add_session("u1", "s1")
        await registry.add_session("u1", "s1")

        assert await cache.smembers(user_sessions_key("u1")) == {"s1"}

    async def test_remove_session_missing_is_noop(self, registry, cache):
        await registry.remove_session("u1", "never-added")
        await registry.add_session("u1", "s1")
        await registry.remove_session("u1", "s1")

        assert await cache.smembers(user_sessions_key("u1")) == set()

    async def test_logout_all_without_sessions_touches_nothing(self, registry, cache):
        cache.delete_many = AsyncMock()

        assert await registry.logout_all("u1") == 0
        cache.delete_many.assert_not_awaited()

    async def test_logout_all_deletes_every_session_in_one_batch(self, registry, cache):
        for sid in ("s1", "s2", "s3"):
            await cache.set(session_key(sid), "{}", 86400)
            await registry.add_session("u1", sid)
        await cache.set(session_key("other"), "{}", 86400)
        cache.delete_many = AsyncMock(wraps=cache.delete_many)

        revoked = await registry.logout_all("u1")

        assert revoked == 3
        cache.delete_many.assert_awaited_once()
        (keys,), _ = cache.delete_many.call_args
        assert set(keys) == {
            session_key("s1"),
            session_key("s2"),
            session_key("s3"),
            user_sessions_key("u1"),
        }
        for sid in ("s1", "s2", "s3"):
            assert await cache.get(session_key(sid)) is None
        assert await cache.smembers(user_sessions_key("u1")) == set()
        assert await cache.get(session_key("other")) == "{}"

    async def test_logout_all_tolerates_already_expired_sessions(self, registry, cache):
        await registry.add_session("u1", "gone")
        await cache.set(session_key("live"), "{}", 86400)
        await registry.add_session("u1", "live")

        assert await registry.logout_all("u1") == 2
        assert await cache.get(session_key("live")) is None


class TestCookieSigning:
    def test_round_trip(self):
        cookie = sign_session_id("abc123", "secret")
        assert cookie.startswith("s%3Aabc123.")
        assert unsign_session_id(cookie, "secret") == "abc123"

    def test_known_signature(self):
        # Same value the express cookie-signature package produces
        assert unsign_session_id(
            "s%3Ahello.DGDUkGlIkCzPz%2BC0B064FNgHdEjox7ch8tOBGslZ5QI", "tobiiscool"
        ) == "hello"

    @pytest.mark.parametrize(
        "cookie",
        [None, "", "abc123", "s%3Aabc123", "s%3Aabc123.forged", "s%3Aother.DGDUkGlIkCzPz%2BC0B064FNgHdEjox7ch8tOBGslZ5QI"],
    )
    def test_rejects_unsigned_or_tampered(self, cookie):
        assert unsign_session_id(cookie, "tobiiscool") is None

    def test_rejects_other_secret(self):
        assert unsign_session_id(sign_session_id("abc123", "secret"), "other") is None


class TestSessionRecord:
    async def test_record_uses_connect_layout(self, cache):
        store = SessionStore(cache)
        data = SessionData.new(86400)
        data.user_id = "u1"
        data.last_renewed = 1700000000000

        await store.set("sid", data)
        payload = json.loads(await cache.get(session_key("sid")))

        assert payload["userId"] == "u1"
        assert payload["passport"] == {"user": "u1"}
        assert payload["lastRenewed"] == 1700000000000
        assert payload["cookie"]["originalMaxAge"] == 86400000
        assert payload["cookie"]["httpOnly"] is True
        assert payload["cookie"]["sameSite"] == "lax"
        assert 86390 <= await cache.ttl(session_key("sid")) <= 86400

        loaded = await store.get("sid")
        assert loaded.user_id == "u1"
        assert loaded.last_renewed == 1700000000000

    async def test_unreadable_record_is_treated_as_missing(self, cache):
        await cache.set(session_key("sid"), "not json", 60)
        assert await SessionStore(cache).get("sid") is None


class TestSessionCarrier:
    async def test_regenerate_replaces_id_and_keeps_csrf_secret(self, cache):
        store = SessionStore(cache)
        carrier = SessionCarrier(store, "old", SessionData.new(86400), is_new=True)
        secret = carrier.ensure_csrf_secret()
        await carrier.save()

        await carrier.regenerate()

        assert carrier.session_id != "old"
        assert carrier.csrf_secret == secret
        assert carrier.user_id is None
        assert await cache.get(session_key("old")) is None

    async def test_touch_extends_stored_ttl(self, cache):
        store = SessionStore(cache)
        carrier = SessionCarrier(store, "sid", SessionData.new(86400), is_new=True)
        await carrier.save()
        await cache.expire(session_key("sid"), 10)

        await carrier.touch()

        assert await cache.ttl(session_key("sid")) > 86000


class TestStartSession:
    async def test_login_session_is_saved_and_indexed(self, auth_service, cache):
        carrier = SessionCarrier(SessionStore(cache), "anon", SessionData.new(86400), is_new=True)

        await auth_service.start_session(carrier, SessionEstablished("u1", 1700000000000))

        assert await cache.smembers(user_sessions_key("u1")) == {carrier.session_id}
        stored = await SessionStore(cache).get(carrier.session_id)
        assert stored.user_id == "u1"
        assert stored.last_renewed == 1700000000000

    async def test_failed_indexing_destroys_new_session(self, auth_service, cache):
        carrier = SessionCarrier(SessionStore(cache), "anon", SessionData.new(86400), is_new=True)
        auth_service.registry.add_session = AsyncMock(side_effect=ConnectionError("redis down"))

        with pytest.raises(ConnectionError):
            await auth_service.start_session(carrier, SessionEstablished("u1", 1))

        assert carrier.destroyed
        assert await cache.get(session_key(carrier.session_id)) is None
