"""列表仓储层级操作测试。"""

from __future__ import annotations

from datetime import timedelta

import pytest

from taskhub.dal.domain.exceptions import CircularReferenceError, EntityNotFoundError
from taskhub.dal.domain.models import lists_table, utcnow
from taskhub.dal.domain.repository import FilterCondition
from taskhub.dal.infrastructure.cache import PerformanceCache, PerformanceMonitor
from taskhub.dal.repositories import ItemsRepository, ListsRepository


async def positions(lists_repo: ListsRepository, parent_id: str | None) -> dict[str, int]:
    return {row["id"]: row["position"] for row in await lists_repo.find_by_parent(parent_id)}


class TestCreateAndQuery:
    async def test_create_appends_to_siblings(self, lists_repo: ListsRepository):
        first = await lists_repo.create({"id": "a", "title": "A"})
        second = await lists_repo.create({"id": "b", "title": "B"})
        child = await lists_repo.create({"id": "a1", "title": "A1", "parent_list_id": "a"})

        assert (first["position"], second["position"], child["position"]) == (0, 1, 0)

    async def test_bulk_create_assigns_consecutive_positions(self, lists_repo: ListsRepository):
        await lists_repo.create({"id": "a", "title": "A"})

        result = await lists_repo.bulk_create([
            {"id": "b", "title": "B"},
            {"id": "c", "title": "C"},
            {"id": "a1", "title": "A1", "parent_list_id": "a"},
            {"id": "d", "title": "D", "position": 7},
            {"id": "e", "title": "E"},
        ])

        assert result.success is True
        assert await positions(lists_repo, None) == {"a": 0, "b": 1, "c": 2, "d": 7, "e": 8}
        assert await positions(lists_repo, "a") == {"a1": 0}

    async def test_find_by_parent_orders_by_position(self, lists_repo: ListsRepository):
        await lists_repo.create({"id": "p", "title": "Parent"})
        await lists_repo.create({"id": "c1", "title": "One", "parent_list_id": "p", "position": 2})
        await lists_repo.create({"id": "c2", "title": "Two", "parent_list_id": "p", "position": 0})
        await lists_repo.create({"id": "c3", "title": "Three", "parent_list_id": "p", "position": 1})

        assert [row["id"] for row in await lists_repo.find_by_parent("p")] == ["c2", "c3", "c1"]
        assert [row["id"] for row in await lists_repo.find_by_parent(None)] == ["p"]

    async def test_find_by_status_and_search(self, lists_repo: ListsRepository):
        await lists_repo.create({"id": "a", "title": "Groceries"})
        await lists_repo.create({"id": "b", "title": "Work", "description": "grocery budget review"})
        await lists_repo.create({"id": "c", "title": "Old", "status": "archived"})

        assert [row["id"] for row in await lists_repo.find_by_status("archived")] == ["c"]
        assert {row["id"] for row in await lists_repo.find_by_status(["active", "archived"])} == {"a", "b", "c"}
        assert {row["id"] for row in await lists_repo.search("grocer")} == {"a", "b"}
        assert len(await lists_repo.search("grocer", limit=1)) == 1


class TestMoveToParent:
    @pytest.fixture(autouse=True)
    async def _tree(self, lists_repo: ListsRepository):
        # root -> child -> grandchild, plus sibling roots
        await lists_repo.create({"id": "root", "title": "Root"})
        await lists_repo.create({"id": "other", "title": "Other"})
        await lists_repo.create({"id": "child", "title": "Child", "parent_list_id": "root"})
        await lists_repo.create({"id": "grandchild", "title": "Grandchild", "parent_list_id": "child"})

    async def test_rejects_move_under_descendant(self, lists_repo: ListsRepository):
        before = {row["id"]: (row["parent_list_id"], row["position"]) for row in await lists_repo.find_all()}

        with pytest.raises(CircularReferenceError):
            await lists_repo.move_to_parent("root", "child")
        with pytest.raises(CircularReferenceError):
            await lists_repo.move_to_parent("root", "grandchild")

        after = {row["id"]: (row["parent_list_id"], row["position"]) for row in await lists_repo.find_all()}
        assert after == before

    async def test_update_by_id_rejects_parent_under_descendant(self, lists_repo: ListsRepository):
        before = {row["id"]: row["parent_list_id"] for row in await lists_repo.find_all()}

        with pytest.raises(CircularReferenceError):
            await lists_repo.update_by_id("root", {"parent_list_id": "grandchild", "title": "Renamed"})
        with pytest.raises(CircularReferenceError):
            await lists_repo.update_by_id("child", {"parent_list_id": "child"})

        assert {row["id"]: row["parent_list_id"] for row in await lists_repo.find_all()} == before
        assert (await lists_repo.find_by_id("root"))["title"] == "Root"

    async def test_update_by_id_checks_new_parent_exists(self, lists_repo: ListsRepository):
        with pytest.raises(EntityNotFoundError):
            await lists_repo.update_by_id("child", {"parent_list_id": "ghost"})
        assert await lists_repo.update_by_id("ghost", {"parent_list_id": "root"}) is None

        updated = await lists_repo.update_by_id("child", {"parent_list_id": "other"})
        assert updated["parent_list_id"] == "other"

    async def test_bulk_update_reports_cycle(self, lists_repo: ListsRepository):
        result = await lists_repo.bulk_update([
            {"id": "root", "data": {"parent_list_id": "child"}},
            {"id": "other", "data": {"title": "Renamed"}},
        ])

        assert [error.id for error in result.errors] == ["root"]
        assert "Circular reference" in result.errors[0].error
        assert [row["id"] for row in result.results] == ["other"]
        assert (await lists_repo.find_by_id("root"))["parent_list_id"] is None

    async def test_update_many_rejects_cycle(self, lists_repo: ListsRepository):
        with pytest.raises(CircularReferenceError):
            await lists_repo.update_many(
                [FilterCondition(field="id", value="root")],
                {"parent_list_id": "grandchild"},
            )
        assert (await lists_repo.find_by_id("root"))["parent_list_id"] is None

        moved = await lists_repo.update_many(
            [FilterCondition(field="parent_list_id", value="child")],
            {"parent_list_id": "other"},
        )
        assert [row["id"] for row in moved] == ["grandchild"]

    async def test_rejects_move_under_itself(self, lists_repo: ListsRepository):
        with pytest.raises(CircularReferenceError):
            await lists_repo.move_to_parent("child", "child")

    async def test_missing_entities(self, lists_repo: ListsRepository):
        with pytest.raises(EntityNotFoundError):
            await lists_repo.move_to_parent("ghost", None)
        with pytest.raises(EntityNotFoundError):
            await lists_repo.move_to_parent("child", "ghost")

    async def test_move_closes_gap_and_appends(self, lists_repo: ListsRepository):
        moved = await lists_repo.move_to_parent("root", "other")

        assert moved["parent_list_id"] == "other"
        assert moved["position"] == 0
        assert await positions(lists_repo, None) == {"other": 0}

    async def test_move_to_explicit_position_shifts_siblings(self, lists_repo: ListsRepository):
        await lists_repo.create({"id": "x", "title": "X", "parent_list_id": "other"})
        await lists_repo.create({"id": "y", "title": "Y", "parent_list_id": "other"})

        moved = await lists_repo.move_to_parent("child", "other", position=1)

        assert moved["position"] == 1
        assert await positions(lists_repo, "other") == {"x": 0, "child": 1, "y": 2}
        assert await positions(lists_repo, "root") == {}
        # 子树跟随移动
        assert (await lists_repo.find_by_id("grandchild"))["parent_list_id"] == "child"

    async def test_move_to_root(self, lists_repo: ListsRepository):
        moved = await lists_repo.move_to_parent("grandchild", None)
        assert moved["parent_list_id"] is None
        assert moved["position"] == 2


class TestReorderAndArchive:
    async def test_reorder_assigns_array_positions(self, lists_repo: ListsRepository):
        await lists_repo.create({"id": "p", "title": "Parent"})
        for list_id in ("c1", "c2", "c3"):
            await lists_repo.create({"id": list_id, "title": list_id, "parent_list_id": "p"})

        reordered = await lists_repo.reorder_within_parent("p", ["c3", "c1", "c2"])

        assert [row["id"] for row in reordered] == ["c3", "c1", "c2"]
        assert await positions(lists_repo, "p") == {"c3": 0, "c1": 1, "c2": 2}

    async def test_reorder_skips_lists_of_other_parents(self, lists_repo: ListsRepository):
        await lists_repo.create({"id": "p", "title": "Parent"})
        await lists_repo.create({"id": "c1", "title": "c1", "parent_list_id": "p"})
        await lists_repo.create({"id": "stray", "title": "Stray"})

        reordered = await lists_repo.reorder_within_parent("p", ["stray", "c1"])

        assert [row["id"] for row in reordered] == ["c1"]
        assert (await lists_repo.find_by_id("stray"))["position"] == 1

    async def test_archive_cascades_to_descendants(self, lists_repo: ListsRepository):
        await lists_repo.create({"id": "a", "title": "A"})
        await lists_repo.create({"id": "b", "title": "B", "parent_list_id": "a"})
        await lists_repo.create({"id": "c", "title": "C", "parent_list_id": "b"})
        await lists_repo.create({"id": "d", "title": "D"})

        assert await lists_repo.archive_with_children("a") == 3
        statuses = {row["id"]: row["status"] for row in await lists_repo.find_all()}
        assert statuses == {"a": "archived", "b": "archived", "c": "archived", "d": "active"}

    async def test_archive_missing_list(self, lists_repo: ListsRepository):
        with pytest.raises(EntityNotFoundError):
            await lists_repo.archive_with_children("ghost")

    async def test_descendants_terminate_on_corrupt_cycle(self, lists_repo: ListsRepository):
        await lists_repo.create({"id": "a", "title": "A"})
        await lists_repo.create({"id": "b", "title": "B", "parent_list_id": "a"})
        await lists_repo.create({"id": "c", "title": "C", "parent_list_id": "b"})
        # 绕过环检测直接写入
        await lists_repo.handle.update(lists_table, lists_table.c.id == "a", {"parent_list_id": "c"})

        assert await lists_repo.get_all_descendants("a") == ["b", "c"]


class TestHierarchyAndStatistics:
    @pytest.fixture(autouse=True)
    async def _forest(self, lists_repo: ListsRepository, items_repo: ItemsRepository):
        await lists_repo.create({"id": "r1", "title": "Root 1"})
        await lists_repo.create({"id": "r2", "title": "Root 2", "status": "archived"})
        await lists_repo.create({"id": "c1", "title": "Child", "parent_list_id": "r1"})
        await lists_repo.create({"id": "g1", "title": "Grandchild", "parent_list_id": "c1"})
        await items_repo.create({"id": "i1", "list_id": "c1", "title": "Done", "status": "completed",
                                 "actual_duration": 30})
        await items_repo.create({"id": "i2", "list_id": "c1", "title": "Late",
                                 "due_date": utcnow() - timedelta(days=1)})
        await items_repo.create({"id": "i3", "list_id": "c1", "title": "Doing", "status": "in_progress"})

    async def test_forest_shape(self, lists_repo: ListsRepository):
        roots = await lists_repo.get_hierarchy()

        assert [root["id"] for root in roots] == ["r1", "r2"]
        child = roots[0]["children"][0]
        assert child["id"] == "c1"
        assert [node["id"] for node in child["children"]] == ["g1"]
        assert roots[1]["children"] == []

    async def test_max_depth_truncates_children(self, lists_repo: ListsRepository):
        roots = await lists_repo.get_hierarchy(max_depth=1)
        assert roots[0]["children"][0]["children"] == []
        assert (await lists_repo.get_hierarchy(max_depth=0))[0]["children"] == []

    async def test_status_filter(self, lists_repo: ListsRepository):
        roots = await lists_repo.get_hierarchy(status_filter=["archived"])
        assert [root["id"] for root in roots] == ["r2"]

    async def test_include_stats(self, lists_repo: ListsRepository):
        roots = await lists_repo.get_hierarchy(include_stats=True)
        stats = roots[0]["children"][0]["stats"]

        assert stats.total_items == 3
        assert stats.completed_items == 1
        assert stats.in_progress_items == 1
        assert stats.overdue_items == 1
        assert stats.completion_rate == pytest.approx(33.33)
        assert roots[0]["stats"].total_items == 0

    async def test_statistics_are_cached_until_items_change(
        self,
        lists_repo: ListsRepository,
        items_repo: ItemsRepository,
        cache: PerformanceCache,
        monitor: PerformanceMonitor,
    ):
        first = await lists_repo.get_list_statistics("c1")
        second = await lists_repo.get_list_statistics("c1")

        assert second == first
        assert first.average_duration == pytest.approx(30.0)
        assert cache.get_stats().hits == 1
        assert monitor.get_metrics().cache_hits == 1

        await items_repo.mark_completed("i3")
        refreshed = await lists_repo.get_list_statistics("c1")
        assert refreshed.completed_items == 2

    async def test_list_writes_invalidate_statistics(
        self, lists_repo: ListsRepository, cache: PerformanceCache
    ):
        key = "repo:lists:stats:c1"

        await lists_repo.get_list_statistics("c1")
        await lists_repo.update_by_id("g1", {"title": "Renamed"})
        assert not await cache.has(key)

        await lists_repo.get_list_statistics("c1")
        await lists_repo.move_to_parent("g1", "r2")
        assert not await cache.has(key)

        await lists_repo.get_list_statistics("c1")
        assert await cache.has(key)
        await lists_repo.archive_with_children("r1")
        assert not await cache.has(key)

    async def test_statistics_for_empty_list(self, lists_repo: ListsRepository):
        stats = await lists_repo.get_list_statistics("g1")
        assert stats.total_items == 0
        assert stats.completion_rate == 0.0
