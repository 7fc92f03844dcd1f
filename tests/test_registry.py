"""仓储注册中心测试。"""

from __future__ import annotations

import asyncio

import pytest

from taskhub.dal.application.registry import RepositoryRegistry, ServiceScope
from taskhub.dal.domain.exceptions import (
    CircularDependencyError,
    MissingDependencyError,
    RegistryError,
    RepositoryNotFoundError,
)


class Repo:
    def __init__(self, name: str, *dependencies: Repo) -> None:
        self.name = name
        self.dependencies = dependencies


@pytest.fixture
def registry() -> RepositoryRegistry:
    return RepositoryRegistry()


class TestDependencyValidation:
    def test_cycle_message_names_full_path(self, registry: RepositoryRegistry):
        registry.register("a", lambda b: Repo("a", b), dependencies=["b"])
        registry.register("b", lambda a: Repo("b", a), dependencies=["a"])

        with pytest.raises(CircularDependencyError) as exc_info:
            registry.validate_dependencies()

        assert str(exc_info.value) == "Circular dependency detected: a -> b -> a"
        assert exc_info.value.cycle == ["a", "b", "a"]

    async def test_get_on_cycle_fails_without_constructing(self, registry: RepositoryRegistry):
        built: list[str] = []

        def factory(name: str):
            def build(*deps: Repo) -> Repo:
                built.append(name)
                return Repo(name, *deps)
            return build

        registry.register("a", factory("a"), dependencies=["b"])
        registry.register("b", factory("b"), dependencies=["c"])
        registry.register("c", factory("c"), dependencies=["a"])

        with pytest.raises(CircularDependencyError):
            await registry.get("a")
        assert built == []

    async def test_missing_dependency(self, registry: RepositoryRegistry):
        registry.register("items", lambda lists: Repo("items", lists), dependencies=["lists"])

        with pytest.raises(MissingDependencyError) as exc_info:
            registry.validate_dependencies()
        assert exc_info.value.dependency == "lists"

        with pytest.raises(MissingDependencyError):
            await registry.get("items")

    def test_dependency_graph(self, registry: RepositoryRegistry):
        registry.register("lists", lambda: Repo("lists"))
        registry.register("items", lambda lists: Repo("items", lists), dependencies=["lists"])

        assert registry.get_dependency_graph() == {"lists": [], "items": ["lists"]}


class TestResolution:
    async def test_dependencies_resolved_before_dependent(self, registry: RepositoryRegistry):
        registry.register("lists", lambda: Repo("lists"))
        registry.register("items", lambda lists: Repo("items", lists), dependencies=["lists"])

        items = await registry.get("items")

        assert items.dependencies[0] is await registry.get("lists")

    async def test_concurrent_gets_construct_singleton_once(self, registry: RepositoryRegistry):
        constructed = 0

        async def factory() -> Repo:
            nonlocal constructed
            constructed += 1
            await asyncio.sleep(0.01)
            return Repo("lists")

        registry.register("lists", factory)

        results = await asyncio.gather(*(registry.get("lists") for _ in range(10)))

        assert constructed == 1
        assert all(result is results[0] for result in results)

    async def test_non_singleton_builds_fresh_instances(self, registry: RepositoryRegistry):
        registry.register("scratch", lambda: Repo("scratch"), singleton=False)

        assert await registry.get("scratch") is not await registry.get("scratch")
        assert registry.get_health_status()["scratch"]["initialized"] is False

    async def test_reentrant_factory_reports_cycle(self, registry: RepositoryRegistry):
        async def factory() -> Repo:
            await registry.get("self")
            return Repo("self")

        registry.register("self", factory)

        with pytest.raises(CircularDependencyError) as exc_info:
            await registry.get("self")
        assert exc_info.value.cycle == ["self", "self"]

    async def test_eager_initialization(self, registry: RepositoryRegistry):
        registry.register("lists", lambda: Repo("lists"), lazy=False)
        registry.register("items", lambda lists: Repo("items", lists), dependencies=["lists"])

        assert await registry.initialize_eager() == ["lists"]

        health = registry.get_health_status()
        assert health["lists"]["initialized"] is True
        assert health["lists"]["has_instance"] is True
        assert health["items"] == {
            "registered": True,
            "initialized": False,
            "singleton": True,
            "lazy": True,
            "dependencies": ["lists"],
            "has_instance": False,
        }

    async def test_unknown_and_duplicate_names(self, registry: RepositoryRegistry):
        registry.register("lists", lambda: Repo("lists"))

        with pytest.raises(RegistryError):
            registry.register("lists", lambda: Repo("again"))
        with pytest.raises(RepositoryNotFoundError) as exc_info:
            await registry.get("nope")
        assert str(exc_info.value) == "Repository 'nope' is not registered"

    async def test_clear(self, registry: RepositoryRegistry):
        registry.register("lists", lambda: Repo("lists"))
        registry.register_service("clock", lambda: object())
        await registry.get("lists")

        registry.clear()

        assert registry.get_repository_names() == []
        assert not registry.has("lists")
        assert not registry.has_service("clock")


class TestServices:
    async def test_scopes(self, registry: RepositoryRegistry):
        registry.register_service("singleton", object)
        registry.register_service("transient", object, scope=ServiceScope.TRANSIENT)
        registry.register_service("scoped", object, scope="scoped")

        assert await registry.get_service("singleton") is await registry.get_service("singleton")
        assert await registry.get_service("transient") is not await registry.get_service("transient")

        scoped = await registry.get_service("scoped")
        assert await registry.get_service("scoped") is scoped

        scope = registry.create_scope()
        assert await scope.get_service("scoped") is not scoped
        assert await scope.get_service("singleton") is await registry.get_service("singleton")

    async def test_async_factory(self, registry: RepositoryRegistry):
        async def connect() -> str:
            return "connected"

        registry.register_service("connection", connect)

        assert await registry.get_service("connection") == "connected"
        assert registry.get_service_health_status()["connection"]["initialized"] is True

    async def test_scope_shares_repository_registrations(self, registry: RepositoryRegistry):
        registry.register("lists", lambda: Repo("lists"))
        scope = registry.create_scope()

        assert scope.has("lists")
        assert await scope.get("lists") is await registry.get("lists")

    async def test_scope_clear_keeps_parent_registrations(self, registry: RepositoryRegistry):
        registry.register("lists", lambda: Repo("lists"))
        registry.register_service("scoped", object, scope=ServiceScope.SCOPED)
        scope = registry.create_scope()
        first = await scope.get_service("scoped")

        scope.clear()

        assert registry.has("lists")
        assert registry.has_service("scoped")
        assert registry.get_repository_names() == ["lists"]
        assert await scope.get_service("scoped") is not first

    async def test_unknown_service(self, registry: RepositoryRegistry):
        with pytest.raises(RepositoryNotFoundError) as exc_info:
            await registry.get_service("nope")
        assert str(exc_info.value) == "Service 'nope' is not registered"
