"""配置模块。"""

from .settings import (
    BulkSettings,
    CacheSettings,
    DALSettings,
    DatabaseSettings,
    LogSettings,
    PerformanceSettings,
    TransactionSettings,
)

__all__ = [
    "BulkSettings",
    "CacheSettings",
    "DALSettings",
    "DatabaseSettings",
    "LogSettings",
    "PerformanceSettings",
    "TransactionSettings",
]
