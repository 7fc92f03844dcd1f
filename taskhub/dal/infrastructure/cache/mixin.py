"""仓储缓存混入与失效策略。"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
import re
import time
from typing import Any

from taskhub.dal.common.logging import logger
from taskhub.dal.infrastructure.cache.cache import PerformanceCache
from taskhub.dal.infrastructure.cache.monitor import PerformanceMonitor


class CacheInvalidationStrategy:
    """实体变更与缓存键模式的对应关系。"""

    @staticmethod
    def stats_patterns(list_id: Any | None = None) -> list[str]:
        if list_id is None:
            return [r"^repo:lists:stats:"]
        return [rf"^repo:lists:stats:{re.escape(str(list_id))}$"]

    @classmethod
    def list_patterns(cls, list_id: Any | None = None) -> list[str]:
        if list_id is None:
            return [r"^repo:lists:"]
        return cls.stats_patterns(list_id)

    @classmethod
    def item_patterns(cls, list_id: Any | None = None) -> list[str]:
        return [r"^repo:items:", *cls.stats_patterns(list_id)]

    @classmethod
    async def on_list_changed(cls, cache: PerformanceCache, list_id: Any | None = None) -> int:
        return await _invalidate(cache, cls.list_patterns(list_id))

    @classmethod
    async def on_item_changed(cls, cache: PerformanceCache, list_id: Any | None = None) -> int:
        return await _invalidate(cache, cls.item_patterns(list_id))


async def _invalidate(cache: PerformanceCache, patterns: list[str]) -> int:
    removed = 0
    for pattern in patterns:
        removed += await cache.invalidate_pattern(pattern)
    return removed


class CachedRepositoryMixin:
    """为仓储提供旁路缓存。

    使用方需要在构造时调用 ``_init_cache``。
    """

    _cache: PerformanceCache | None
    _monitor: PerformanceMonitor | None
    _cache_enabled: bool

    def _init_cache(
        self,
        cache: PerformanceCache | None,
        monitor: PerformanceMonitor | None = None,
        *,
        enabled: bool = True,
    ) -> None:
        self._cache = cache
        self._monitor = monitor
        self._cache_enabled = enabled and cache is not None

    @property
    def cache(self) -> PerformanceCache | None:
        return self._cache

    @property
    def cache_enabled(self) -> bool:
        return self._cache_enabled

    def set_cache_enabled(self, enabled: bool) -> None:
        self._cache_enabled = enabled and self._cache is not None

    async def execute_with_cache[T](
        self,
        key: str,
        producer: Callable[[], Awaitable[T]],
        *,
        ttl: float | None = None,
    ) -> T:
        """旁路缓存：命中直接返回，未命中时执行 producer 并写入缓存。

        producer 返回 None 时不写入缓存。
        """
        if self._cache_enabled and self._cache is not None:
            start = time.perf_counter()
            cached = await self._cache.get(key)
            if cached is not None:
                if self._monitor is not None:
                    self._monitor.record_query(key, time.perf_counter() - start, cached=True)
                logger.debug(f"缓存命中: {key}")
                return cached

        start = time.perf_counter()
        value = await producer()
        if self._monitor is not None:
            self._monitor.record_query(key, time.perf_counter() - start, cached=False)

        if self._cache_enabled and self._cache is not None and value is not None:
            await self._cache.set(key, value, ttl)
        return value

    async def invalidate_cache(self, *patterns: str) -> int:
        if self._cache is None:
            return 0
        return await _invalidate(self._cache, list(patterns))


__all__ = [
    "CacheInvalidationStrategy",
    "CachedRepositoryMixin",
]
