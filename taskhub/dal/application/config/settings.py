"""数据访问层配置。

使用 pydantic-settings 进行分层配置管理，每个子配置有独立的环境变量前缀。
"""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """数据库配置。

    环境变量前缀: DATABASE_
    示例: DATABASE_URL, DATABASE_ECHO, DATABASE_POOL_SIZE
    """

    url: str = Field(
        default="sqlite+aiosqlite:///./taskhub.db",
        description="数据库连接字符串（异步驱动）"
    )
    echo: bool = Field(
        default=False,
        description="是否输出 SQL 语句"
    )
    pool_size: int = Field(
        default=5,
        description="数据库连接池大小（SQLite 忽略）"
    )
    max_overflow: int = Field(
        default=10,
        description="连接池最大溢出连接数（SQLite 忽略）"
    )
    pool_recycle: int = Field(
        default=3600,
        description="连接回收时间（秒）"
    )
    pool_pre_ping: bool = Field(
        default=True,
        description="是否在获取连接前进行 PING"
    )

    model_config = SettingsConfigDict(
        env_prefix="DATABASE_",
        case_sensitive=False,
    )


class CacheSettings(BaseSettings):
    """缓存配置。

    环境变量前缀: CACHE_
    """

    enabled: bool = Field(
        default=True,
        description="是否启用仓储查询缓存"
    )
    max_size: int = Field(
        default=5000,
        gt=0,
        description="最大缓存条目数"
    )
    default_ttl: float = Field(
        default=600.0,
        gt=0,
        description="默认过期时间（秒）"
    )
    stats_ttl: float = Field(
        default=120.0,
        gt=0,
        description="统计类查询的过期时间（秒）"
    )

    model_config = SettingsConfigDict(
        env_prefix="CACHE_",
        case_sensitive=False,
    )


class TransactionSettings(BaseSettings):
    """事务配置。

    环境变量前缀: TRANSACTION_
    """

    timeout: float = Field(
        default=30.0,
        gt=0,
        description="事务超时时间（秒）"
    )
    retry_attempts: int = Field(
        default=0,
        ge=0,
        description="失败后的重试次数"
    )
    retry_delay: float | None = Field(
        default=None,
        ge=0,
        description="固定重试间隔（秒），为空时按尝试次数线性退避"
    )
    retry_base_delay: float = Field(
        default=1.0,
        ge=0,
        description="线性退避的基础间隔（秒）"
    )

    model_config = SettingsConfigDict(
        env_prefix="TRANSACTION_",
        case_sensitive=False,
    )


class BulkSettings(BaseSettings):
    """批量操作配置。

    环境变量前缀: BULK_
    """

    batch_size: int = Field(
        default=50,
        gt=0,
        description="每批处理的条目数"
    )
    continue_on_error: bool = Field(
        default=True,
        description="批次失败时是否降级为逐条处理"
    )

    model_config = SettingsConfigDict(
        env_prefix="BULK_",
        case_sensitive=False,
    )


class PerformanceSettings(BaseSettings):
    """性能监控配置。

    环境变量前缀: PERFORMANCE_
    """

    enabled: bool = Field(
        default=True,
        description="是否记录查询耗时"
    )
    slow_query_threshold: float = Field(
        default=1.0,
        gt=0,
        description="慢查询阈值（秒）"
    )
    max_slow_queries: int = Field(
        default=100,
        gt=0,
        description="保留的慢查询记录数"
    )

    model_config = SettingsConfigDict(
        env_prefix="PERFORMANCE_",
        case_sensitive=False,
    )


class LogSettings(BaseSettings):
    """日志配置。

    环境变量前缀: LOG_
    """

    level: str = Field(
        default="INFO",
        description="日志级别"
    )
    dir: str | None = Field(
        default=None,
        description="日志目录"
    )
    enable_file: bool = Field(
        default=False,
        description="是否写入日志文件"
    )
    enable_file_rotation: bool = Field(
        default=True,
        description="是否按时间滚动日志文件"
    )
    retention_days: int = Field(
        default=7,
        description="日志保留天数"
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
    )


class DALSettings(BaseSettings):
    """数据访问层总配置。

    组合所有子配置，从 .env 文件和环境变量加载。
    """

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    transaction: TransactionSettings = Field(default_factory=TransactionSettings)
    bulk: BulkSettings = Field(default_factory=BulkSettings)
    performance: PerformanceSettings = Field(default_factory=PerformanceSettings)
    log: LogSettings = Field(default_factory=LogSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
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
