'''
Key-value cache used to memoize list endpoints.

The store is a pluggable capability (in-process TTL dict, or Redis) and is
wrapped by CacheService, which owns the key convention and guarantees that a
cache failure never turns a successful data operation into an error.
'''
import json
import time
from typing import Any, Optional, Protocol
from uuid import UUID

import redis.asyncio as redis

from ..common.config import settings
from ..common.logger import log

# --- Key families ---
SESSION_FEATURE = "session"
CLASS_STUDENT_FEATURE = "class-student"
STUDENT_FEATURE = "student"
CLASS_FEATURE = "class"

LIST_BY_CLASS = "listByClass"
LIST_BY_TEACHER = "listByTeacher"
LIST = "list"


# --- 1. Stores ---

class CacheStore(Protocol):
    async def get(self, key: str) -> Optional[str]: ...
    async def set(self, key: str, value: str, ttl_seconds: int) -> None: ...
    async def delete(self, key: str) -> None: ...
    async def delete_by_prefix(self, prefix: str) -> int: ...


class InMemoryCacheStore:
    """Process-local TTL store. Expired entries are dropped lazily on read."""
    def __init__(self):
        self._data: dict[str, tuple[float, str]] = {}

    async def get(self, key: str) -> Optional[str]:
        entry = self._data.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if expires_at <= time.monotonic():
            self._data.pop(key, None)
            return None
        return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._data[key] = (time.monotonic() + ttl_seconds, value)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def delete_by_prefix(self, prefix: str) -> int:
        doomed = [key for key in self._data if key.startswith(prefix)]
        for key in doomed:
            del self._data[key]
        return len(doomed)


class RedisCacheStore:
    """Redis-backed store. Keys are namespaced so prefix scans stay local to the app."""
    def __init__(self, url: str, namespace: str = "tb:"):
        self._r = redis.from_url(url, decode_responses=True)
        self._ns = namespace
        log.info(f"RedisCacheStore initialized with namespace '{namespace}'")

    def _k(self, key: str) -> str:
        return f"{self._ns}{key}"

    async def get(self, key: str) -> Optional[str]:
        return await self._r.get(self._k(key))

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        await self._r.set(self._k(key), value, ex=ttl_seconds)

    async def delete(self, key: str) -> None:
        await self._r.delete(self._k(key))

    async def delete_by_prefix(self, prefix: str) -> int:
        deleted = 0
        batch: list[str] = []
        async for key in self._r.scan_iter(match=f"{self._k(prefix)}*", count=200):
            batch.append(key)
            if len(batch) >= 200:
                deleted += await self._r.delete(*batch)
                batch = []
        if batch:
            deleted += await self._r.delete(*batch)
        return deleted

    async def close(self) -> None:
        await self._r.aclose()


# --- 2. Service ---

def _format_params(params: dict[str, Any]) -> str:
    """`{b: 2, a: 1, c: None}` -> `a_1_b_2`. None values are skipped."""
    return "_".join(
        f"{name}_{value}" for name, value in sorted(params.items()) if value is not None
    )


class CacheService:
    """
    Keys look like `{feature}:{operation}:{scope}:{params}`.

    `scope` holds the owner ids the entry belongs to (teacherId, classId...)
    and is what invalidation targets: `prefix(feature, operation, **scope)`
    ends with a colon, so `classId_1` can never match `classId_12`.
    """
    def __init__(self, store: CacheStore, default_ttl: int = settings.CACHE_DEFAULT_TTL_SECONDS):
        self.store = store
        self.default_ttl = default_ttl

    @staticmethod
    def prefix(feature: str, operation: str, **scope: Any) -> str:
        return f"{feature}:{operation}:{_format_params(scope)}:"

    @classmethod
    def build_key(cls, feature: str, operation: str, scope: dict[str, Any], params: Optional[dict[str, Any]] = None) -> str:
        return f"{cls.prefix(feature, operation, **scope)}{_format_params(params or {})}"

    async def get(self, key: str) -> Any:
        try:
            raw = await self.store.get(key)
            if raw is None:
                return None
            return json.loads(raw)
        except Exception as e:
            log.warning(f"Cache get failed for '{key}': {e}", exc_info=True)
            return None

    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        try:
            await self.store.set(key, json.dumps(value, default=str), ttl_seconds or self.default_ttl)
        except Exception as e:
            log.warning(f"Cache set failed for '{key}': {e}", exc_info=True)

    async def delete(self, key: str) -> None:
        try:
            await self.store.delete(key)
        except Exception as e:
            log.warning(f"Cache delete failed for '{key}': {e}", exc_info=True)

    async def delete_by_prefix(self, prefix: str) -> None:
        try:
            deleted = await self.store.delete_by_prefix(prefix)
            log.info(f"Cache invalidated {deleted} key(s) under '{prefix}'")
        except Exception as e:
            log.warning(f"Cache prefix delete failed for '{prefix}': {e}", exc_info=True)

    # --- Invalidation of cross-feature key families ---

    async def invalidate_session_lists(self, teacher_id: UUID, class_id: Optional[UUID]) -> None:
        """Drops cached session listings for the teacher and, when given, the class."""
        if class_id is not None:
            await self.delete_by_prefix(self.prefix(SESSION_FEATURE, LIST_BY_CLASS, classId=class_id))
        await self.delete_by_prefix(self.prefix(SESSION_FEATURE, LIST_BY_TEACHER, teacherId=teacher_id))

    async def invalidate_membership_lists(self, teacher_id: UUID, class_id: UUID) -> None:
        await self.delete_by_prefix(self.prefix(CLASS_STUDENT_FEATURE, LIST, classId=class_id))
        await self.delete_by_prefix(self.prefix(STUDENT_FEATURE, LIST, teacherId=teacher_id))

    async def invalidate_class_lists(self, teacher_id: UUID) -> None:
        await self.delete_by_prefix(self.prefix(CLASS_FEATURE, LIST, teacherId=teacher_id))

    async def invalidate_class_name_copies(self, teacher_id: UUID, class_id: UUID) -> None:
        """Session and student listings embed class names; drop them along with the class list."""
        await self.invalidate_class_lists(teacher_id)
        await self.invalidate_session_lists(teacher_id, class_id)
        await self.delete_by_prefix(self.prefix(STUDENT_FEATURE, LIST, teacherId=teacher_id))


# --- 3. Lifespan-managed singleton & dependency ---

_cache_service: CacheService | None = None

def create_cache_service() -> CacheService:
    """Builds the process-wide cache. Called by the app's lifespan."""
    global _cache_service
    if settings.CACHE_BACKEND == "redis":
        store: CacheStore = RedisCacheStore(settings.REDIS_URL)
    else:
        store = InMemoryCacheStore()
    _cache_service = CacheService(store)
    log.info(f"Cache service created with '{settings.CACHE_BACKEND}' backend.")
    return _cache_service

async def dispose_cache_service() -> None:
    global _cache_service
    if _cache_service is not None and isinstance(_cache_service.store, RedisCacheStore):
        await _cache_service.store.close()
    _cache_service = None

def get_cache_service() -> CacheService:
    """FastAPI dependency returning the process-wide cache."""
    if _cache_service is None:
        return create_cache_service()
    return _cache_service
