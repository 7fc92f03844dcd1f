"""测试公共 fixture。

每个测试使用 tmp_path 下独立的 SQLite 文件数据库。
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
from sqlalchemy.ext.asyncio import create_async_engine

from taskhub.dal.domain.models import generate_id, lists_table, metadata
from taskhub.dal.domain.repository import BaseRepository
from taskhub.dal.domain.transaction import TransactionCoordinator
from taskhub.dal.infrastructure.cache import PerformanceCache, PerformanceMonitor
from taskhub.dal.infrastructure.database import DatabaseHandle
from taskhub.dal.repositories import ItemsRepository, ListsRepository


def sqlite_url(path: Path) -> str:
    return f"sqlite+aiosqlite:///{path / 'taskhub.db'}"


@pytest.fixture
async def handle(tmp_path: Path) -> AsyncGenerator[DatabaseHandle]:
    engine = create_async_engine(sqlite_url(tmp_path))
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
    yield DatabaseHandle(engine)
    await engine.dispose()


@pytest.fixture
def coordinator(handle: DatabaseHandle) -> TransactionCoordinator:
    return TransactionCoordinator(handle, default_timeout=5.0, retry_base_delay=0.0)


@pytest.fixture
def cache() -> PerformanceCache:
    return PerformanceCache(max_size=100, default_ttl=60)


@pytest.fixture
def monitor() -> PerformanceMonitor:
    return PerformanceMonitor(slow_query_threshold=1.0)


@pytest.fixture
def repo(handle: DatabaseHandle) -> BaseRepository:
    """列表表上的通用仓储。"""
    return BaseRepository(handle, lists_table, id_factory=generate_id)


@pytest.fixture
def lists_repo(
    handle: DatabaseHandle,
    coordinator: TransactionCoordinator,
    cache: PerformanceCache,
    monitor: PerformanceMonitor,
) -> ListsRepository:
    return ListsRepository(handle, coordinator, cache, monitor)


@pytest.fixture
def items_repo(
    handle: DatabaseHandle,
    coordinator: TransactionCoordinator,
    lists_repo: ListsRepository,
    cache: PerformanceCache,
    monitor: PerformanceMonitor,
) -> ItemsRepository:
    return ItemsRepository(handle, coordinator, lists_repo, cache, monitor)
