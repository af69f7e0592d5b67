"""Redis adapter for key material, the retention index and the revocation set.

Every method is a suspension point. Connection and timeout failures surface as
``StoreUnavailableError`` so callers never confuse an outage with a rejected
credential.
"""

import builtins
from collections.abc import AsyncIterator, Callable, Sequence
from contextlib import asynccontextmanager

from redis import asyncio as redis_async
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from redis.exceptions import WatchError

from warden.core.errors import StoreUnavailableError
from warden.core.logging import get_logger

logger = get_logger(__name__)

MaterialKeys = Callable[[str], Sequence[str]]


@asynccontextmanager
async def _store_errors(operation: str) -> AsyncIterator[None]:
    try:
        yield
    except (RedisConnectionError, RedisTimeoutError) as exc:
        logger.warning("key_store_unavailable", operation=operation, error=str(exc))
        raise StoreUnavailableError(f"key store unavailable during {operation}") from exc


class KeyStore:
    """Thin async wrapper over the string, set and sorted-set commands we need."""

    def __init__(self, redis_client: redis_async.Redis) -> None:
        self._redis = redis_client

    async def get(self, key: str) -> str | None:
        async with _store_errors("get"):
            return await self._redis.get(key)

    async def get_many(self, keys: Sequence[str]) -> list[str | None]:
        if not keys:
            return []
        async with _store_errors("mget"):
            return list(await self._redis.mget(keys))

    async def set(
        self,
        key: str,
        value: str,
        *,
        only_if_absent: bool = False,
        only_if_present: bool = False,
    ) -> bool:
        """Write ``value``; returns False when a conditional write did not apply."""
        async with _store_errors("set"):
            result = await self._redis.set(
                key, value, nx=only_if_absent, xx=only_if_present
            )
        return bool(result)

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        async with _store_errors("delete"):
            return await self._redis.delete(*keys)

    async def delete_if_equals(self, key: str, expected: str) -> bool:
        """Delete ``key`` only while it still holds ``expected``."""
        async with _store_errors("delete_if_equals"):
            while True:
                try:
                    async with self._redis.pipeline(transaction=True) as pipe:
                        await pipe.watch(key)
                        current = await pipe.get(key)
                        if current != expected:
                            await pipe.reset()
                            return False
                        pipe.multi()
                        pipe.delete(key)
                        await pipe.execute()
                        return True
                except WatchError:
                    continue

    async def add_member(self, set_key: str, member: str) -> None:
        async with _store_errors("sadd"):
            await self._redis.sadd(set_key, member)

    async def is_member(self, set_key: str, member: str) -> bool:
        async with _store_errors("sismember"):
            return bool(await self._redis.sismember(set_key, member))

    async def members(self, set_key: str) -> builtins.set[str]:
        async with _store_errors("smembers"):
            return set(await self._redis.smembers(set_key))

    async def index_add(self, index_key: str, member: str, score: float) -> None:
        async with _store_errors("zadd"):
            await self._redis.zadd(index_key, {member: score})

    async def index_newest(self, index_key: str, count: int) -> list[str]:
        """Return up to ``count`` members, highest score first."""
        if count <= 0:
            return []
        async with _store_errors("zrevrange"):
            return list(await self._redis.zrevrange(index_key, 0, count - 1))

    async def index_score(self, index_key: str, member: str) -> float | None:
        async with _store_errors("zscore"):
            return await self._redis.zscore(index_key, member)

    async def index_size(self, index_key: str) -> int:
        async with _store_errors("zcard"):
            return await self._redis.zcard(index_key)

    async def claim_pointer(
        self, pointer_key: str, index_key: str, member: str, score: float
    ) -> str:
        """Point ``pointer_key`` at ``member`` and index it, only if unset.

        Both writes land in one MULTI/EXEC, so a racer that loses never
        enters the index. Returns whichever member the pointer names afterwards.
        """
        async with _store_errors("claim"):
            while True:
                try:
                    async with self._redis.pipeline(transaction=True) as pipe:
                        await pipe.watch(pointer_key)
                        current = await pipe.get(pointer_key)
                        if current is not None:
                            await pipe.reset()
                            return current
                        pipe.multi()
                        pipe.set(pointer_key, member)
                        pipe.zadd(index_key, {member: score})
                        await pipe.execute()
                        return member
                except WatchError:
                    continue

    async def advance_pointer(
        self, pointer_key: str, index_key: str, member: str
    ) -> tuple[bool, str | None]:
        """Move ``pointer_key`` to ``member`` unless it names a newer member.

        Members are ordered by (index score, member). A member that has already
        left the index is never installed. Returns whether the pointer moved
        and the member it named before.
        """
        async with _store_errors("advance"):
            while True:
                try:
                    async with self._redis.pipeline(transaction=True) as pipe:
                        await pipe.watch(pointer_key, index_key)
                        current = await pipe.get(pointer_key)
                        score = await pipe.zscore(index_key, member)
                        if score is None:
                            await pipe.reset()
                            return False, current
                        if current is not None and current != member:
                            current_score = await pipe.zscore(index_key, current)
                            if current_score is not None and (
                                current_score,
                                current,
                            ) > (score, member):
                                await pipe.reset()
                                return False, current
                        pipe.multi()
                        pipe.set(pointer_key, member)
                        await pipe.execute()
                        return True, current
                except WatchError:
                    continue

    async def trim_index(
        self,
        index_key: str,
        keep: int,
        material_keys: MaterialKeys,
        *,
        pinned_by: str | None = None,
    ) -> list[str]:
        """Evict all but the ``keep`` newest members along with their material.

        Candidates are computed under WATCH and removed in the same MULTI/EXEC
        block as their material, so readers never see an indexed member whose
        material is gone. The member named by ``pinned_by`` is never evicted.
        """
        async with _store_errors("trim"):
            while True:
                try:
                    async with self._redis.pipeline(transaction=True) as pipe:
                        if pinned_by is None:
                            await pipe.watch(index_key)
                        else:
                            await pipe.watch(index_key, pinned_by)
                        pinned = await pipe.get(pinned_by) if pinned_by else None
                        excess = await pipe.zcard(index_key) - keep
                        if excess <= 0:
                            await pipe.reset()
                            return []
                        oldest_first = await pipe.zrange(index_key, 0, -1)
                        evicted = [m for m in oldest_first if m != pinned][:excess]
                        if not evicted:
                            await pipe.reset()
                            return []
                        pipe.multi()
                        pipe.zrem(index_key, *evicted)
                        for member in evicted:
                            pipe.delete(*material_keys(member))
                        await pipe.execute()
                        return evicted
                except WatchError:
                    continue
