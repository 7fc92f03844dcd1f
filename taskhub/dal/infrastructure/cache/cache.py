"""仓储查询缓存。

带 TTL 和 LRU 容量上限的内存缓存，统计命中率，支持按正则批量失效。
"""

from __future__ import annotations

import asyncio
from collections import OrderedDict
from dataclasses import dataclass
import hashlib
import json
import re
import time
from typing import Any

from pydantic import BaseModel

from taskhub.dal.common.logging import logger


@dataclass(slots=True)
class CacheEntry:
    value: Any
    expires_at: float | None

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


class CacheStats(BaseModel):
    """缓存统计快照。命中率/未命中率为百分比。"""

    gets: int
    sets: int
    hits: int
    misses: int
    evictions: int
    hit_rate: float
    miss_rate: float
    size: int
    max_size: int


def generate_key(operation: str, params: dict[str, Any] | None = None, prefix: str = "repo") -> str:
    """生成确定性的缓存键。

    Args:
        operation: 操作名，如 ``lists:stats``
        params: 参数，按键排序后取 MD5
        prefix: 键前缀

    Returns:
        ``prefix:operation`` 或 ``prefix:operation:<md5>``
    """
    if not params:
        return f"{prefix}:{operation}"
    payload = json.dumps(params, sort_keys=True, default=str)
    digest = hashlib.md5(payload.encode()).hexdigest()
    return f"{prefix}:{operation}:{digest}"


class PerformanceCache:
    """性能缓存。

    - 读取时惰性检查过期
    - 写入时超过 ``max_size`` 淘汰最久未使用的条目
    - 所有操作由 asyncio.Lock 保护

    使用示例:
        cache = PerformanceCache(max_size=1000, default_ttl=60)
        await cache.set("repo:lists:stats:1", stats)
        stats = await cache.get("repo:lists:stats:1")
        await cache.invalidate_pattern(r"^repo:lists:")
    """

    def __init__(self, max_size: int = 5000, default_ttl: float | None = 600.0) -> None:
        if max_size <= 0:
            raise ValueError("max_size 必须大于 0")
        self._max_size = max_size
        self._default_ttl = default_ttl
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = asyncio.Lock()
        self._gets = 0
        self._sets = 0
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def default_ttl(self) -> float | None:
        return self._default_ttl

    def __len__(self) -> int:
        return len(self._entries)

    async def get(self, key: str, default: Any = None) -> Any:
        """获取缓存，未命中或已过期时返回 default。"""
        async with self._lock:
            self._gets += 1
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return default
            if entry.is_expired(time.monotonic()):
                del self._entries[key]
                self._misses += 1
                return default
            self._entries.move_to_end(key)
            self._hits += 1
            return entry.value

    async def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        """写入缓存。

        Args:
            key: 缓存键
            value: 值
            ttl: 过期时间（秒），为空时使用默认值
        """
        ttl = ttl if ttl is not None else self._default_ttl
        expires_at = time.monotonic() + ttl if ttl is not None else None
        async with self._lock:
            self._sets += 1
            if key in self._entries:
                self._entries.move_to_end(key)
            self._entries[key] = CacheEntry(value=value, expires_at=expires_at)
            while len(self._entries) > self._max_size:
                evicted, _ = self._entries.popitem(last=False)
                self._evictions += 1
                logger.debug(f"缓存淘汰: {evicted}")

    async def has(self, key: str) -> bool:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            if entry.is_expired(time.monotonic()):
                del self._entries[key]
                return False
            return True

    async def delete(self, key: str) -> bool:
        async with self._lock:
            return self._entries.pop(key, None) is not None

    async def invalidate_pattern(self, pattern: str | re.Pattern[str]) -> int:
        """删除所有匹配正则的键，返回删除数量。"""
        regex = re.compile(pattern) if isinstance(pattern, str) else pattern
        async with self._lock:
            keys = [key for key in self._entries if regex.search(key)]
            for key in keys:
                del self._entries[key]
        if keys:
            logger.debug(f"缓存失效: {regex.pattern} -> {len(keys)} 条")
        return len(keys)

    async def clear(self) -> None:
        """清空缓存和统计。"""
        async with self._lock:
            self._entries.clear()
            self._reset_counters()
        logger.info("仓储缓存已清空")

    async def reset(self) -> None:
        """只重置统计计数。"""
        async with self._lock:
            self._reset_counters()

    def _reset_counters(self) -> None:
        self._gets = 0
        self._sets = 0
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def get_stats(self) -> CacheStats:
        lookups = self._hits + self._misses
        return CacheStats(
            gets=self._gets,
            sets=self._sets,
            hits=self._hits,
            misses=self._misses,
            evictions=self._evictions,
            hit_rate=round(self._hits / lookups * 100, 2) if lookups else 0.0,
            miss_rate=round(self._misses / lookups * 100, 2) if lookups else 0.0,
            size=len(self._entries),
            max_size=self._max_size,
        )

    def __repr__(self) -> str:
        return f"<PerformanceCache size={len(self._entries)} max_size={self._max_size}>"


__all__ = [
    "CacheEntry",
    "CacheStats",
    "PerformanceCache",
    "generate_key",
]
