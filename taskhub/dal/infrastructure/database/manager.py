"""数据库管理器。

负责引擎创建、表结构初始化、健康检查和资源释放。
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import MetaData
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from taskhub.dal.application.config.settings import DatabaseSettings
from taskhub.dal.common.logging import logger
from taskhub.dal.infrastructure.database.handle import DatabaseHandle


class DatabaseManager:
    """数据库管理器。

    职责：
    1. 管理数据库引擎和连接池
    2. 提供数据库句柄
    3. 健康检查
    4. 生命周期管理

    使用示例:
        manager = DatabaseManager(DatabaseSettings(url="sqlite+aiosqlite:///./app.db"))
        await manager.initialize()
        handle = manager.handle
        await manager.cleanup()
    """

    def __init__(self, config: DatabaseSettings | None = None) -> None:
        self._config = config or DatabaseSettings()
        self._engine: AsyncEngine | None = None
        self._handle: DatabaseHandle | None = None

    @property
    def is_initialized(self) -> bool:
        return self._engine is not None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("数据库管理器未初始化，请先调用 initialize()")
        return self._engine

    @property
    def handle(self) -> DatabaseHandle:
        if self._handle is None:
            raise RuntimeError("数据库管理器未初始化，请先调用 initialize()")
        return self._handle

    def _engine_options(self) -> dict[str, Any]:
        options: dict[str, Any] = {
            "echo": self._config.echo,
            "pool_pre_ping": self._config.pool_pre_ping,
        }
        # SQLite 使用单文件连接池，不接受连接池大小参数
        if make_url(self._config.url).get_backend_name() != "sqlite":
            options.update(
                pool_size=self._config.pool_size,
                max_overflow=self._config.max_overflow,
                pool_recycle=self._config.pool_recycle,
            )
        return options

    async def initialize(self) -> DatabaseHandle:
        """创建引擎并验证连接。"""
        if self._engine is not None:
            logger.warning("数据库管理器已初始化，跳过重复初始化")
            return self.handle

        self._engine = create_async_engine(self._config.url, **self._engine_options())
        self._handle = DatabaseHandle(self._engine)

        if not await self._handle.health_check():
            logger.warning(f"数据库暂不可用: {make_url(self._config.url).render_as_string()}")
        logger.info("数据库管理器初始化完成")
        return self._handle

    async def create_schema(self, metadata: MetaData) -> None:
        """按 metadata 建表（开发与测试用，已存在的表会跳过）。"""
        async with self.engine.begin() as conn:
            await conn.run_sync(metadata.create_all)
        logger.info(f"表结构已创建: {', '.join(sorted(metadata.tables))}")

    async def health_check(self) -> bool:
        if self._handle is None:
            return False
        return await self._handle.health_check()

    async def cleanup(self) -> None:
        """清理资源，关闭所有连接。"""
        if self._engine is not None:
            await self._engine.dispose()
            logger.info("数据库连接已关闭")
        self._engine = None
        self._handle = None

    def __repr__(self) -> str:
        status = "initialized" if self.is_initialized else "not initialized"
        return f"<DatabaseManager status={status}>"


__all__ = [
    "DatabaseManager",
]
