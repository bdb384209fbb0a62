from __future__ import annotations

import asyncio
import time
from typing import Dict, Iterable, Optional, Protocol, Set, Tuple, Union

import redis.asyncio as aioredis
from redis import Redis


class KeyValueCache(Protocol):
    """Key-value operations the auth core relies on."""

    async def get(self, key: str) -> Optional[str]: ...

    async def getdel(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None: ...

    async def delete(self, key: str) -> int: ...

    async def incr(self, key: str) -> int: ...

    async def expire(self, key: str, ttl_seconds: int) -> bool: ...

    async def ttl(self, key: str) -> int: ...

    async def sadd(self, key: str, member: str) -> int: ...

    async def srem(self, key: str, member: str) -> int: ...

    async def smembers(self, key: str) -> Set[str]: ...

    async def delete_many(self, keys: Iterable[str]) -> int: ...


class RedisCache:
    """Thin Redis wrapper for tokens, counters and session records."""

    DEFAULT_OPERATION_TIMEOUT = 5.0

    def __init__(self, redis_url: str, *, socket_timeout: float = DEFAULT_OPERATION_TIMEOUT):
        self.redis_url = redis_url
        self.client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    def verify_connection(self) -> None:
        """Assert Redis connectivity before enabling dependent features."""
        # A short-lived sync client keeps the async client off a temporary loop
        sync_client = Redis.from_url(self.redis_url, decode_responses=True)
        try:
            sync_client.ping()
        finally:
            sync_client.close()

    async def get(self, key: str) -> Optional[str]:
        return await self.client.get(key)

    async def getdel(self, key: str) -> Optional[str]:
        return await self.client.getdel(key)

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        await self.client.set(key, value, ex=ttl_seconds)

    async def delete(self, key: str) -> int:
        return await self.client.delete(key)

    async def incr(self, key: str) -> int:
        return await self.client.incr(key)

    async def expire(self, key: str, ttl_seconds: int) -> bool:
        return bool(await self.client.expire(key, ttl_seconds))

    async def ttl(self, key: str) -> int:
        return await self.client.ttl(key)

    async def sadd(self, key: str, member: str) -> int:
        return await self.client.sadd(key, member)

    async def srem(self, key: str, member: str) -> int:
        return await self.client.srem(key, member)

    async def smembers(self, key: str) -> Set[str]:
        return set(await self.client.smembers(key))

    async def delete_many(self, keys: Iterable[str]) -> int:
        """Delete every key in one MULTI/EXEC batch; absent keys count as zero."""
        pipe = self.client.pipeline(transaction=True)
        for key in keys:
            pipe.delete(key)
        results = await pipe.execute()
        return sum(int(r or 0) for r in results)

    async def close(self) -> None:
        await self.client.aclose()


_Entry = Tuple[Union[str, Set[str]], Optional[float]]


class MemoryCache:
    """In-process stand-in for Redis used in TEST_MODE and local fallback.

    Mirrors the TTL semantics of the Redis commands it replaces: ``incr`` on a
    missing key starts at 1 with no expiry, ``expire`` on a missing key
    returns False, and ``ttl`` returns -2 for missing and -1 for persistent
    keys.
    """

    def __init__(self) -> None:
        self._data: Dict[str, _Entry] = {}
        self._lock = asyncio.Lock()

    def verify_connection(self) -> None:
        return None

    def _live(self, key: str) -> Optional[_Entry]:
        entry = self._data.get(key)
        if entry is None:
            return None
        _, expires_at = entry
        if expires_at is not None and expires_at <= time.monotonic():
            self._data.pop(key, None)
            return None
        return entry

    @staticmethod
    def _deadline(ttl_seconds: Optional[int]) -> Optional[float]:
        if ttl_seconds is None:
            return None
        return time.monotonic() + ttl_seconds

    async def get(self, key: str) -> Optional[str]:
        entry = self._live(key)
        if entry is None or not isinstance(entry[0], str):
            return None
        return entry[0]

    async def getdel(self, key: str) -> Optional[str]:
        async with self._lock:
            value = await self.get(key)
            if value is not None:
                self._data.pop(key, None)
            return value

    async def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        self._data[key] = (str(value), self._deadline(ttl_seconds))

    async def delete(self, key: str) -> int:
        existed = self._live(key) is not None
        self._data.pop(key, None)
        return int(existed)

    async def incr(self, key: str) -> int:
        async with self._lock:
            entry = self._live(key)
            if entry is None:
                count, expires_at = 1, None
            else:
                count, expires_at = int(entry[0]) + 1, entry[1]
            self._data[key] = (str(count), expires_at)
            return count

    async def expire(self, key: str, ttl_seconds: int) -> bool:
        entry = self._live(key)
        if entry is None:
            return False
        self._data[key] = (entry[0], self._deadline(ttl_seconds))
        return True

    async def ttl(self, key: str) -> int:
        entry = self._live(key)
        if entry is None:
            return -2
        if entry[1] is None:
            return -1
        return max(0, int(round(entry[1] - time.monotonic())))

    async def sadd(self, key: str, member: str) -> int:
        entry = self._live(key)
        members: Set[str] = set(entry[0]) if entry and isinstance(entry[0], set) else set()
        added = int(member not in members)
        members.add(member)
        self._data[key] = (members, entry[1] if entry else None)
        return added

    async def srem(self, key: str, member: str) -> int:
        entry = self._live(key)
        if entry is None or not isinstance(entry[0], set) or member not in entry[0]:
            return 0
        members = set(entry[0])
        members.discard(member)
        if members:
            self._data[key] = (members, entry[1])
        else:
            self._data.pop(key, None)
        return 1

    async def smembers(self, key: str) -> Set[str]:
        entry = self._live(key)
        if entry is None or not isinstance(entry[0], set):
            return set()
        return set(entry[0])

    async def delete_many(self, keys: Iterable[str]) -> int:
        async with self._lock:
            removed = 0
            for key in list(keys):
                removed += await self.delete(key)
            return removed

    async def close(self) -> None:
        self._data.clear()
