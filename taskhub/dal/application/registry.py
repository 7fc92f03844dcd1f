"""仓储注册中心（依赖注入容器）。

登记仓储工厂及其依赖，按依赖顺序解析实例：
- 单例实例只构造一次，并发 get 由每个名字一把 asyncio.Lock 保护
- 解析链记录在 ContextVar 中，重入解析立即报循环依赖
- validate_dependencies 做完整的静态检查（缺失依赖、环）

服务（数据库句柄、事务协调器、缓存等）走并行的 register_service/get_service 路径，
支持 singleton/transient/scoped 三种作用域。
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from contextvars import ContextVar
from dataclasses import dataclass, field
from enum import Enum
import inspect
from typing import Any

from taskhub.dal.common.logging import logger
from taskhub.dal.domain.exceptions import (
    CircularDependencyError,
    MissingDependencyError,
    RegistryError,
    RepositoryNotFoundError,
)

type Factory = Callable[..., Any | Awaitable[Any]]

# 当前任务正在解析的仓储名（按解析顺序）
_resolution_chain: ContextVar[tuple[str, ...]] = ContextVar("taskhub_dal_resolution_chain", default=())


class ServiceScope(str, Enum):
    SINGLETON = "singleton"
    TRANSIENT = "transient"
    SCOPED = "scoped"


@dataclass(slots=True)
class RepositoryMetadata:
    name: str
    dependencies: list[str] = field(default_factory=list)
    singleton: bool = True
    lazy: bool = True
    description: str | None = None


@dataclass(slots=True)
class RepositoryEntry:
    metadata: RepositoryMetadata
    factory: Factory
    instance: Any = None
    initialized: bool = False


@dataclass(slots=True)
class ServiceEntry:
    name: str
    factory: Factory
    scope: ServiceScope = ServiceScope.SINGLETON
    lazy: bool = True
    instance: Any = None
    initialized: bool = False


async def _invoke(factory: Factory, *args: Any) -> Any:
    instance = factory(*args)
    if inspect.isawaitable(instance):
        instance = await instance
    return instance


class RepositoryRegistry:
    """仓储注册中心。

    使用示例:
        registry = RepositoryRegistry()
        registry.register("lists", lambda: ListsRepository(handle, coordinator))
        registry.register("items", lambda lists: ItemsRepository(handle, coordinator, lists),
                          dependencies=["lists"])
        registry.validate_dependencies()
        await registry.initialize_eager()
        items = await registry.get("items")
    """

    def __init__(self, parent: RepositoryRegistry | None = None) -> None:
        self._parent = parent
        self._repositories: dict[str, RepositoryEntry] = parent._repositories if parent else {}
        self._services: dict[str, ServiceEntry] = parent._services if parent else {}
        self._locks: dict[str, asyncio.Lock] = parent._locks if parent else {}
        # 作用域内的 scoped 服务实例
        self._scoped: dict[str, Any] = {}
        self._scoped_lock = asyncio.Lock()

    # ------------------------------------------------------------------ 仓储

    def register(
        self,
        name: str,
        factory: Factory,
        *,
        dependencies: Iterable[str] = (),
        singleton: bool = True,
        lazy: bool = True,
        description: str | None = None,
    ) -> RepositoryMetadata:
        """登记仓储工厂。

        Args:
            name: 仓储名
            factory: 工厂函数，按 dependencies 顺序接收已解析的依赖，可以是协程函数
            dependencies: 依赖的仓储名
            singleton: 是否单例
            lazy: False 时在 initialize_eager 中提前构造
            description: 描述

        Raises:
            RegistryError: 名字已登记
        """
        if name in self._repositories:
            raise RegistryError(f"Repository '{name}' is already registered", metadata={"name": name})
        metadata = RepositoryMetadata(
            name=name,
            dependencies=list(dependencies),
            singleton=singleton,
            lazy=lazy,
            description=description,
        )
        self._repositories[name] = RepositoryEntry(metadata=metadata, factory=factory)
        logger.debug(f"注册仓储: {name} (依赖: {metadata.dependencies or '-'})")
        return metadata

    def has(self, name: str) -> bool:
        return name in self._repositories

    def get_metadata(self, name: str) -> RepositoryMetadata:
        return self._entry(name).metadata

    def get_repository_names(self) -> list[str]:
        return list(self._repositories)

    def _entry(self, name: str) -> RepositoryEntry:
        entry = self._repositories.get(name)
        if entry is None:
            raise RepositoryNotFoundError(name)
        return entry

    def _lock_for(self, name: str) -> asyncio.Lock:
        lock = self._locks.get(name)
        if lock is None:
            lock = self._locks[name] = asyncio.Lock()
        return lock

    def _check_acyclic_from(self, name: str) -> None:
        """从 name 出发检查依赖子图，缺失依赖或成环时抛错。"""
        visiting: list[str] = []
        done: set[str] = set()

        def visit(current: str) -> None:
            if current in done:
                return
            if current in visiting:
                raise CircularDependencyError([*visiting[visiting.index(current):], current])
            visiting.append(current)
            for dependency in self._entry(current).metadata.dependencies:
                if dependency not in self._repositories:
                    raise MissingDependencyError(current, dependency)
                visit(dependency)
            visiting.pop()
            done.add(current)

        visit(name)

    async def get(self, name: str) -> Any:
        """解析仓储实例。

        依赖先于自身解析；单例只构造一次。

        Raises:
            RepositoryNotFoundError: 未登记
            MissingDependencyError: 依赖未登记
            CircularDependencyError: 依赖成环或工厂内部重入解析
        """
        entry = self._entry(name)
        if entry.metadata.singleton and entry.initialized:
            return entry.instance

        chain = _resolution_chain.get()
        if name in chain:
            raise CircularDependencyError([*chain[chain.index(name):], name])
        if not chain:
            self._check_acyclic_from(name)

        token = _resolution_chain.set((*chain, name))
        try:
            if not entry.metadata.singleton:
                return await self._construct(entry)
            async with self._lock_for(name):
                if entry.initialized:
                    return entry.instance
                instance = await self._construct(entry)
                entry.instance = instance
                entry.initialized = True
                return instance
        finally:
            _resolution_chain.reset(token)

    async def _construct(self, entry: RepositoryEntry) -> Any:
        dependencies = [await self.get(dependency) for dependency in entry.metadata.dependencies]
        instance = await _invoke(entry.factory, *dependencies)
        logger.debug(f"仓储已创建: {entry.metadata.name}")
        return instance

    def validate_dependencies(self) -> None:
        """静态检查所有依赖均已登记且依赖图无环。

        Raises:
            MissingDependencyError: 依赖未登记
            CircularDependencyError: 依赖成环，消息包含完整环路径
        """
        for name in self._repositories:
            self._check_acyclic_from(name)
        logger.debug(f"依赖校验通过: {len(self._repositories)} 个仓储")

    async def initialize_eager(self) -> list[str]:
        """构造所有非懒加载的仓储，返回构造的名字。"""
        names = [name for name, entry in self._repositories.items() if not entry.metadata.lazy]
        for name in names:
            await self.get(name)
        if names:
            logger.info(f"预加载仓储完成: {', '.join(names)}")
        return names

    def get_dependency_graph(self) -> dict[str, list[str]]:
        return {name: list(entry.metadata.dependencies) for name, entry in self._repositories.items()}

    def get_health_status(self) -> dict[str, dict[str, Any]]:
        return {
            name: {
                "registered": True,
                "initialized": entry.initialized,
                "singleton": entry.metadata.singleton,
                "lazy": entry.metadata.lazy,
                "dependencies": list(entry.metadata.dependencies),
                "has_instance": entry.instance is not None,
            }
            for name, entry in self._repositories.items()
        }

    # ------------------------------------------------------------------ 服务

    def register_service(
        self,
        name: str,
        factory: Factory,
        *,
        scope: ServiceScope | str = ServiceScope.SINGLETON,
        lazy: bool = True,
    ) -> None:
        if name in self._services:
            raise RegistryError(f"Service '{name}' is already registered", metadata={"name": name})
        self._services[name] = ServiceEntry(name=name, factory=factory, scope=ServiceScope(scope), lazy=lazy)
        logger.debug(f"注册服务: {name} ({ServiceScope(scope).value})")

    def has_service(self, name: str) -> bool:
        return name in self._services

    def get_service_names(self) -> list[str]:
        return list(self._services)

    async def get_service(self, name: str) -> Any:
        entry = self._services.get(name)
        if entry is None:
            raise RepositoryNotFoundError(name, kind="Service")

        if entry.scope == ServiceScope.TRANSIENT:
            return await _invoke(entry.factory)

        if entry.scope == ServiceScope.SCOPED:
            async with self._scoped_lock:
                if name not in self._scoped:
                    self._scoped[name] = await _invoke(entry.factory)
                return self._scoped[name]

        if entry.initialized:
            return entry.instance
        async with self._lock_for(f"service:{name}"):
            if not entry.initialized:
                entry.instance = await _invoke(entry.factory)
                entry.initialized = True
        return entry.instance

    def get_service_health_status(self) -> dict[str, dict[str, Any]]:
        return {
            name: {
                "registered": True,
                "scope": entry.scope.value,
                "lazy": entry.lazy,
                "initialized": entry.initialized,
            }
            for name, entry in self._services.items()
        }

    def create_scope(self) -> RepositoryRegistry:
        """创建作用域：共享登记信息与单例，scoped 服务在作用域内各自独立。"""
        return RepositoryRegistry(parent=self)

    # ------------------------------------------------------------------ 生命周期

    def clear(self) -> None:
        """清空所有登记和实例。

        作用域只清空自己的 scoped 实例，登记归父注册中心所有。
        """
        if self._parent is not None:
            self._scoped.clear()
            logger.debug("服务作用域已清空")
            return
        self._repositories.clear()
        self._services.clear()
        self._locks.clear()
        self._scoped.clear()
        logger.debug("仓储注册中心已清空")

    def __repr__(self) -> str:
        return f"<RepositoryRegistry repositories={len(self._repositories)} services={len(self._services)}>"


__all__ = [
    "RepositoryEntry",
    "RepositoryMetadata",
    "RepositoryRegistry",
    "ServiceEntry",
    "ServiceScope",
]
