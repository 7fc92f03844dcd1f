"""查询性能监控。"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime

from pydantic import BaseModel

from taskhub.dal.common.logging import logger


@dataclass(slots=True)
class QueryRecord:
    name: str
    duration: float
    cached: bool
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


class PerformanceMetrics(BaseModel):
    query_count: int
    cache_hits: int
    cache_misses: int
    cache_hit_rate: float
    average_query_time: float
    slow_query_count: int


class PerformanceMonitor:
    """记录查询耗时与缓存命中情况。

    只有真正访问数据库的查询计入平均耗时；超过阈值的查询保留在慢查询列表中。
    """

    def __init__(self, slow_query_threshold: float = 1.0, max_slow_queries: int = 100, enabled: bool = True) -> None:
        self._threshold = slow_query_threshold
        self._enabled = enabled
        self._slow_queries: deque[QueryRecord] = deque(maxlen=max_slow_queries)
        self._query_count = 0
        self._total_query_time = 0.0
        self._cache_hits = 0
        self._cache_misses = 0

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def slow_query_threshold(self) -> float:
        return self._threshold

    def record_query(self, name: str, duration: float, cached: bool = False) -> None:
        if not self._enabled:
            return
        if cached:
            self._cache_hits += 1
            return
        self._cache_misses += 1
        self._query_count += 1
        self._total_query_time += duration
        if duration > self._threshold:
            self._slow_queries.append(QueryRecord(name=name, duration=duration, cached=cached))
            logger.warning(f"慢查询: {name} 耗时 {duration:.3f}s (阈值: {self._threshold}s)")

    def get_cache_hit_rate(self) -> float:
        total = self._cache_hits + self._cache_misses
        return round(self._cache_hits / total * 100, 2) if total else 0.0

    def get_slow_queries(self, limit: int = 10) -> list[QueryRecord]:
        """最慢的若干条查询，按耗时降序。"""
        return sorted(self._slow_queries, key=lambda record: record.duration, reverse=True)[:limit]

    def get_metrics(self) -> PerformanceMetrics:
        return PerformanceMetrics(
            query_count=self._query_count,
            cache_hits=self._cache_hits,
            cache_misses=self._cache_misses,
            cache_hit_rate=self.get_cache_hit_rate(),
            average_query_time=(
                round(self._total_query_time / self._query_count, 6) if self._query_count else 0.0
            ),
            slow_query_count=len(self._slow_queries),
        )

    def reset(self) -> None:
        self._slow_queries.clear()
        self._query_count = 0
        self._total_query_time = 0.0
        self._cache_hits = 0
        self._cache_misses = 0


__all__ = [
    "PerformanceMetrics",
    "PerformanceMonitor",
    "QueryRecord",
]
