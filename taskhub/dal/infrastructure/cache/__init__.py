"""性能缓存模块。

提供 TTL/LRU 内存缓存、查询性能监控和仓储旁路缓存混入。
"""

from .cache import CacheEntry, CacheStats, PerformanceCache, generate_key
from .mixin import CacheInvalidationStrategy, CachedRepositoryMixin
from .monitor import PerformanceMetrics, PerformanceMonitor, QueryRecord

__all__ = [
    "CacheEntry",
    "CacheInvalidationStrategy",
    "CacheStats",
    "CachedRepositoryMixin",
    "PerformanceCache",
    "PerformanceMetrics",
    "PerformanceMonitor",
    "QueryRecord",
    "generate_key",
]
