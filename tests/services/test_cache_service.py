import pytest
from unittest.mock import AsyncMock, MagicMock
from uuid import UUID

from tutorbook_backend.services.cache_service import (
    CacheService,
    InMemoryCacheStore,
    RedisCacheStore,
    SESSION_FEATURE,
    LIST_BY_CLASS,
    LIST_BY_TEACHER,
)

CLASS_1 = UUID('00000000-0000-4000-8000-000000000001')
CLASS_12 = UUID('00000000-0000-4000-8000-000000000012')
TEACHER = UUID('dcef54de-bc89-4388-a7a8-dba5d8327447')


class TestCacheKeys:

    def test_params_are_sorted_and_none_skipped(self):
        key = CacheService.build_key("session", "listByClass", {"classId": "c1"}, {"b": 2, "a": 1, "c": None})
        assert key == "session:listByClass:classId_c1:a_1_b_2"

    def test_prefix_ends_with_separator(self):
        assert CacheService.prefix("class", "list", teacherId="t1") == "class:list:teacherId_t1:"


@pytest.mark.anyio
class TestCacheService:

    async def test_round_trip_and_delete(self, cache_service: CacheService):
        await cache_service.set("k", [{"id": 1}])
        assert await cache_service.get("k") == [{"id": 1}]
        await cache_service.delete("k")
        assert await cache_service.get("k") is None

    async def test_expired_entries_are_dropped(self, cache_store: InMemoryCacheStore):
        await cache_store.set("live", "v", ttl_seconds=60)
        await cache_store.set("dead", "v", ttl_seconds=0)
        assert await cache_store.get("live") == "v"
        assert await cache_store.get("dead") is None

    async def test_prefix_invalidation_does_not_touch_similar_ids(self, cache_service: CacheService):
        key_1 = CacheService.build_key(SESSION_FEATURE, LIST_BY_CLASS, {"classId": CLASS_1}, {"teacherId": TEACHER})
        key_12 = CacheService.build_key(SESSION_FEATURE, LIST_BY_CLASS, {"classId": CLASS_12}, {"teacherId": TEACHER})
        teacher_key = CacheService.build_key(SESSION_FEATURE, LIST_BY_TEACHER, {"teacherId": TEACHER})
        for key in (key_1, key_12, teacher_key):
            await cache_service.set(key, ["x"])

        await cache_service.invalidate_session_lists(TEACHER, CLASS_1)

        assert await cache_service.get(key_1) is None
        assert await cache_service.get(teacher_key) is None
        assert await cache_service.get(key_12) == ["x"]

    async def test_store_failures_are_swallowed(self):
        store = MagicMock()
        store.get = AsyncMock(side_effect=ConnectionError("down"))
        store.set = AsyncMock(side_effect=ConnectionError("down"))
        store.delete_by_prefix = AsyncMock(side_effect=ConnectionError("down"))
        cache = CacheService(store)

        assert await cache.get("k") is None
        await cache.set("k", 1)
        await cache.delete_by_prefix("k")


@pytest.mark.anyio
class TestRedisCacheStore:

    async def test_prefix_delete_scans_namespaced_keys(self):
        client = MagicMock()

        async def scan_iter(match, count=None):
            assert match == "tb:session:list:*"
            for key in ("tb:session:list:a", "tb:session:list:b"):
                yield key

        client.scan_iter = scan_iter
        client.delete = AsyncMock(return_value=2)
        # from_url does not connect until a command is sent
        store = RedisCacheStore("redis://localhost:6379/0")
        store._r = client

        deleted = await store.delete_by_prefix("session:list:")
        assert deleted == 2
        client.delete.assert_awaited_once_with("tb:session:list:a", "tb:session:list:b")
