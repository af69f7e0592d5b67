"""Tests for the Redis key store adapter."""

from unittest.mock import AsyncMock

import pytest
from fakeredis.aioredis import FakeRedis
from redis.exceptions import ConnectionError as RedisConnectionError

from warden.core.errors import StoreUnavailableError
from warden.keys.store import KeyStore

INDEX = "test:index"


def _material(member: str) -> tuple[str, str]:
    return (f"test:a:{member}", f"test:b:{member}")


class TestConditionalWrites:
    """set-if-absent and compare-and-delete."""

    async def test_only_if_absent(self, key_store: KeyStore) -> None:
        assert await key_store.set("k", "first", only_if_absent=True) is True
        assert await key_store.set("k", "second", only_if_absent=True) is False
        assert await key_store.get("k") == "first"

    async def test_only_if_present(self, key_store: KeyStore) -> None:
        assert await key_store.set("k", "v", only_if_present=True) is False
        assert await key_store.get("k") is None

    async def test_delete_if_equals(self, key_store: KeyStore) -> None:
        await key_store.set("k", "a")
        assert await key_store.delete_if_equals("k", "b") is False
        assert await key_store.get("k") == "a"
        assert await key_store.delete_if_equals("k", "a") is True
        assert await key_store.get("k") is None

    async def test_get_many_preserves_order(self, key_store: KeyStore) -> None:
        await key_store.set("x", "1")
        await key_store.set("z", "3")
        assert await key_store.get_many(["x", "y", "z"]) == ["1", None, "3"]
        assert await key_store.get_many([]) == []


class TestPointer:
    """Pointer claims and forward-only moves."""

    async def test_first_claim_wins_and_indexes(self, key_store: KeyStore) -> None:
        assert await key_store.claim_pointer("ptr", INDEX, "a", 1.0) == "a"
        assert await key_store.claim_pointer("ptr", INDEX, "b", 2.0) == "a"
        assert await key_store.get("ptr") == "a"
        assert await key_store.index_score(INDEX, "a") == 1.0
        assert await key_store.index_score(INDEX, "b") is None

    async def test_advance_to_newer_member(self, key_store: KeyStore) -> None:
        await key_store.claim_pointer("ptr", INDEX, "a", 1.0)
        await key_store.index_add(INDEX, "b", 2.0)
        assert await key_store.advance_pointer("ptr", INDEX, "b") == (True, "a")
        assert await key_store.get("ptr") == "b"

    async def test_advance_never_moves_backwards(self, key_store: KeyStore) -> None:
        await key_store.index_add(INDEX, "a", 1.0)
        await key_store.claim_pointer("ptr", INDEX, "b", 2.0)
        assert await key_store.advance_pointer("ptr", INDEX, "a") == (False, "b")
        assert await key_store.get("ptr") == "b"

    async def test_advance_refuses_unindexed_member(self, key_store: KeyStore) -> None:
        await key_store.claim_pointer("ptr", INDEX, "a", 1.0)
        assert await key_store.advance_pointer("ptr", INDEX, "gone") == (False, "a")
        assert await key_store.get("ptr") == "a"

    async def test_advance_sets_empty_pointer(self, key_store: KeyStore) -> None:
        await key_store.index_add(INDEX, "a", 1.0)
        assert await key_store.advance_pointer("ptr", INDEX, "a") == (True, None)
        assert await key_store.get("ptr") == "a"


class TestRetentionIndex:
    """Sorted-set index with material trimmed alongside."""

    async def test_newest_first(self, key_store: KeyStore) -> None:
        for score, member in enumerate(["a", "b", "c"]):
            await key_store.index_add(INDEX, member, float(score))
        assert await key_store.index_newest(INDEX, 2) == ["c", "b"]
        assert await key_store.index_newest(INDEX, 0) == []

    async def test_trim_evicts_oldest_with_material(self, key_store: KeyStore) -> None:
        for score, member in enumerate(["a", "b", "c", "d"]):
            await key_store.index_add(INDEX, member, float(score))
            for key in _material(member):
                await key_store.set(key, member)

        evicted = await key_store.trim_index(INDEX, 2, _material)

        assert evicted == ["a", "b"]
        assert await key_store.index_size(INDEX) == 2
        assert await key_store.get_many([*_material("a"), *_material("b")]) == [
            None
        ] * 4
        assert await key_store.get(_material("c")[0]) == "c"

    async def test_trim_within_limit_is_noop(self, key_store: KeyStore) -> None:
        await key_store.index_add(INDEX, "a", 1.0)
        assert await key_store.trim_index(INDEX, 5, _material) == []
        assert await key_store.index_size(INDEX) == 1

    async def test_trim_skips_pinned_member(self, key_store: KeyStore) -> None:
        for score, member in enumerate(["a", "b", "c"]):
            await key_store.index_add(INDEX, member, float(score))
            await key_store.set(_material(member)[0], member)
        await key_store.set("ptr", "a")

        evicted = await key_store.trim_index(INDEX, 1, _material, pinned_by="ptr")

        assert evicted == ["b", "c"]
        assert await key_store.index_newest(INDEX, 5) == ["a"]
        assert await key_store.get(_material("a")[0]) == "a"


class TestMembership:
    async def test_set_members(self, key_store: KeyStore) -> None:
        await key_store.add_member("revoked", "a")
        assert await key_store.is_member("revoked", "a") is True
        assert await key_store.is_member("revoked", "b") is False
        assert await key_store.members("revoked") == {"a"}


class TestUnavailable:
    """Connection failures are transient, never credential rejections."""

    async def test_connection_error_is_wrapped(
        self, key_store: KeyStore, fake_redis: FakeRedis, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr(
            fake_redis, "get", AsyncMock(side_effect=RedisConnectionError("down"))
        )
        with pytest.raises(StoreUnavailableError):
            await key_store.get("k")
