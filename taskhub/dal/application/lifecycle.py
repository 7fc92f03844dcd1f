"""数据访问层生命周期。

DataAccessLayer 是进程级容器，启动时显式构造、关闭时显式释放：
数据库句柄 -> 事务协调器 -> 性能缓存/监控 -> 仓储注册中心。

模块级的 initialize_dal/shutdown_dal/get_dal_health_status 管理"当前"容器，
测试中可以直接构造独立的 DataAccessLayer。
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from taskhub.dal.application.config.settings import DALSettings
from taskhub.dal.application.registry import RepositoryRegistry, ServiceScope
from taskhub.dal.common.logging import log_exceptions, logger, setup_logging
from taskhub.dal.domain.exceptions import DALNotInitializedError
from taskhub.dal.domain.models import metadata
from taskhub.dal.domain.transaction import TransactionCoordinator
from taskhub.dal.infrastructure.cache import PerformanceCache, PerformanceMonitor
from taskhub.dal.infrastructure.database import DatabaseHandle, DatabaseManager
from taskhub.dal.repositories import items, lists

type Registration = Callable[[RepositoryRegistry, DataAccessLayer], None]

# 仓储按固定顺序登记
DEFAULT_REGISTRATIONS: tuple[Registration, ...] = (
    lists.register,
    items.register,
)


class DataAccessLayer:
    """数据访问层容器。

    使用示例:
        dal = DataAccessLayer(DALSettings())
        await dal.initialize(create_schema=True)
        lists_repo = await dal.registry.get("lists")
        print(await dal.get_health_status())
        await dal.shutdown()
    """

    def __init__(
        self,
        settings: DALSettings | None = None,
        *,
        handle: DatabaseHandle | None = None,
        registrations: tuple[Registration, ...] = DEFAULT_REGISTRATIONS,
    ) -> None:
        self._settings = settings or DALSettings()
        self._external_handle = handle
        self._registrations = registrations
        self._database: DatabaseManager | None = None
        self._handle: DatabaseHandle | None = None
        self._coordinator: TransactionCoordinator | None = None
        self._cache: PerformanceCache | None = None
        self._monitor: PerformanceMonitor | None = None
        self._registry: RepositoryRegistry | None = None

    @property
    def settings(self) -> DALSettings:
        return self._settings

    @property
    def is_initialized(self) -> bool:
        return self._registry is not None

    def _require[T](self, value: T | None) -> T:
        if value is None:
            raise DALNotInitializedError()
        return value

    @property
    def handle(self) -> DatabaseHandle:
        return self._require(self._handle)

    @property
    def coordinator(self) -> TransactionCoordinator:
        return self._require(self._coordinator)

    @property
    def cache(self) -> PerformanceCache:
        return self._require(self._cache)

    @property
    def monitor(self) -> PerformanceMonitor:
        return self._require(self._monitor)

    @property
    def registry(self) -> RepositoryRegistry:
        return self._require(self._registry)

    async def initialize(self, *, create_schema: bool = False) -> DataAccessLayer:
        """初始化数据库、缓存和注册中心，并预加载非懒加载仓储。"""
        if self.is_initialized:
            logger.warning("数据访问层已初始化，跳过重复初始化")
            return self

        settings = self._settings
        if self._external_handle is not None:
            self._handle = self._external_handle
        else:
            self._database = DatabaseManager(settings.database)
            self._handle = await self._database.initialize()
            if create_schema:
                await self._database.create_schema(metadata)

        self._coordinator = TransactionCoordinator(
            self._handle,
            default_timeout=settings.transaction.timeout,
            default_retry_attempts=settings.transaction.retry_attempts,
            default_retry_delay=settings.transaction.retry_delay,
            retry_base_delay=settings.transaction.retry_base_delay,
        )
        self._cache = PerformanceCache(
            max_size=settings.cache.max_size,
            default_ttl=settings.cache.default_ttl,
        )
        self._monitor = PerformanceMonitor(
            slow_query_threshold=settings.performance.slow_query_threshold,
            max_slow_queries=settings.performance.max_slow_queries,
            enabled=settings.performance.enabled,
        )

        registry = RepositoryRegistry()
        for name, value in (
            ("database", self._handle),
            ("transactions", self._coordinator),
            ("cache", self._cache),
            ("monitor", self._monitor),
        ):
            registry.register_service(name, lambda value=value: value, scope=ServiceScope.SINGLETON)
        for register in self._registrations:
            register(registry, self)

        registry.validate_dependencies()
        self._registry = registry
        try:
            await registry.initialize_eager()
        except Exception:
            await self.shutdown()
            raise

        logger.info(f"数据访问层初始化完成 | 仓储: {', '.join(registry.get_repository_names())}")
        return self

    async def get_health_status(self) -> dict[str, Any]:
        """注册中心、缓存、性能与数据库的健康快照。"""
        registry = self.registry
        database_ok = await self.handle.health_check()
        return {
            "status": "healthy" if database_ok else "degraded",
            "database": database_ok,
            "repositories": registry.get_health_status(),
            "services": registry.get_service_health_status(),
            "cache": self.cache.get_stats().model_dump(),
            "performance": self.monitor.get_metrics().model_dump(),
            "active_transactions": len(self.coordinator.get_active_transactions()),
        }

    async def shutdown(self) -> None:
        """清空注册中心和缓存，释放自建的数据库连接。"""
        if self._registry is not None:
            self._registry.clear()
        if self._cache is not None:
            await self._cache.clear()
        if self._database is not None:
            await self._database.cleanup()
        self._registry = None
        self._cache = None
        self._monitor = None
        self._coordinator = None
        self._handle = None
        self._database = None
        logger.info("数据访问层已关闭")


_current: DataAccessLayer | None = None


@log_exceptions
async def initialize_dal(
    settings: DALSettings | None = None,
    *,
    handle: DatabaseHandle | None = None,
    create_schema: bool = False,
    configure_logging: bool = False,
) -> DataAccessLayer:
    """初始化当前进程的数据访问层。已初始化时直接返回现有容器。"""
    global _current
    if _current is not None and _current.is_initialized:
        return _current

    settings = settings or DALSettings()
    if configure_logging:
        setup_logging(
            log_level=settings.log.level,
            log_dir=settings.log.dir,
            enable_file_rotation=settings.log.enable_file_rotation,
            retention_days=settings.log.retention_days,
            enable_file=settings.log.enable_file,
        )

    dal = DataAccessLayer(settings, handle=handle)
    await dal.initialize(create_schema=create_schema)
    _current = dal
    return dal


def get_dal() -> DataAccessLayer:
    if _current is None or not _current.is_initialized:
        raise DALNotInitializedError()
    return _current


async def get_dal_health_status() -> dict[str, Any]:
    return await get_dal().get_health_status()


async def shutdown_dal() -> None:
    """关闭当前数据访问层。未初始化时什么也不做。"""
    global _current
    if _current is None:
        return
    dal, _current = _current, None
    await dal.shutdown()


__all__ = [
    "DEFAULT_REGISTRATIONS",
    "DataAccessLayer",
    "get_dal",
    "get_dal_health_status",
    "initialize_dal",
    "shutdown_dal",
]
