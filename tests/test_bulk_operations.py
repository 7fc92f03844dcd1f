"""批量操作引擎测试。"""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from taskhub.dal.domain.models import lists_table
from taskhub.dal.domain.repository import (
    RECORD_NOT_FOUND,
    BaseRepository,
    BulkOptions,
    BulkUpdateItem,
)
from taskhub.dal.infrastructure.database import DatabaseHandle


class TestEmptyInput:
    @pytest.mark.parametrize("operation", ["bulk_create", "bulk_update", "bulk_delete"])
    async def test_short_circuits_without_handle(self, operation: str):
        handle = AsyncMock(spec=DatabaseHandle)
        repo = BaseRepository(handle, lists_table)
        result = await getattr(repo, operation)([])

        assert result.success is True
        assert result.results == []
        assert result.errors == []
        assert result.summary.model_dump() == {"total": 0, "successful": 0, "failed": 0}
        assert handle.mock_calls == []


class TestBulkCreate:
    async def test_batches_of_fifty(self, repo: BaseRepository):
        repo.create_many = AsyncMock(wraps=repo.create_many)
        items = [{"title": f"List {i}"} for i in range(75)]

        result = await repo.bulk_create(items, BulkOptions(batch_size=50))

        assert result.summary.total == 75
        assert result.summary.successful == 75
        assert result.summary.failed == 0
        assert result.success is True
        assert repo.create_many.await_count == 2
        assert [len(call.args[0]) for call in repo.create_many.await_args_list] == [50, 25]
        assert await repo.count() == 75

    async def test_continue_on_error_isolates_bad_item(self, repo: BaseRepository):
        items = [{"title": "ok 1"}, {"description": "missing title"}, {"title": "ok 2"}]

        result = await repo.bulk_create(items, BulkOptions(continue_on_error=True))

        assert len(result.results) == 2
        assert len(result.errors) == 1
        assert result.errors[0].index == 1
        assert result.success is False
        assert result.summary.total == 3
        assert await repo.count() == 2

    async def test_fail_fast_marks_whole_batch(self, repo: BaseRepository):
        repo.create_many = AsyncMock(side_effect=RuntimeError("batch failed"))
        repo.create = AsyncMock()
        items = [{"title": "a"}, {"title": "b"}, {"title": "c"}]

        result = await repo.bulk_create(items, BulkOptions(continue_on_error=False))

        assert result.results == []
        assert [error.index for error in result.errors] == [0, 1, 2]
        assert {error.error for error in result.errors} == {"batch failed"}
        repo.create.assert_not_awaited()

    async def test_fail_fast_stops_later_batches(self, repo: BaseRepository):
        items = [{"title": "a"}, {"title": "b"}, {"description": "bad"}, {"title": "d"}, {"title": "e"}]

        result = await repo.bulk_create(items, BulkOptions(batch_size=2, continue_on_error=False))

        assert len(result.results) == 2
        assert [error.index for error in result.errors] == [2, 3, 4]
        assert result.summary.model_dump() == {"total": 5, "successful": 2, "failed": 3}
        assert await repo.count() == 2


class TestBulkUpdate:
    @pytest.fixture(autouse=True)
    async def _seed(self, repo: BaseRepository):
        await repo.create_many([{"id": f"l{i}", "title": f"List {i}"} for i in range(4)])

    async def test_updates_and_reports_missing(self, repo: BaseRepository):
        result = await repo.bulk_update([
            BulkUpdateItem(id="l0", data={"title": "zero"}),
            {"id": "missing", "data": {"title": "nope"}},
            {"id": "l2", "data": {"status": "archived"}},
        ])

        assert [row["id"] for row in result.results] == ["l0", "l2"]
        assert len(result.errors) == 1
        assert result.errors[0].id == "missing"
        assert result.errors[0].index == 1
        assert result.errors[0].error == RECORD_NOT_FOUND
        assert (await repo.find_by_id("l0"))["title"] == "zero"

    async def test_failed_batch_degrades_to_single_items(self, repo: BaseRepository):
        result = await repo.bulk_update([
            {"id": "l0", "data": {"title": "zero"}},
            {"id": "l1", "data": {"unknown": 1}},
            {"id": "l2", "data": {"title": "two"}},
        ])

        assert [row["id"] for row in result.results] == ["l0", "l2"]
        assert [(error.index, error.id) for error in result.errors] == [(1, "l1")]
        assert (await repo.find_by_id("l2"))["title"] == "two"

    async def test_fail_fast_rolls_back_failing_batch(self, repo: BaseRepository):
        result = await repo.bulk_update(
            [
                {"id": "l0", "data": {"title": "zero"}},
                {"id": "l1", "data": {"unknown": 1}},
                {"id": "l2", "data": {"title": "two"}},
                {"id": "l3", "data": {"title": "three"}},
            ],
            BulkOptions(batch_size=2, continue_on_error=False),
        )

        assert result.results == []
        assert [error.id for error in result.errors] == ["l0", "l1", "l2", "l3"]
        assert (await repo.find_by_id("l0"))["title"] == "List 0"
        assert (await repo.find_by_id("l3"))["title"] == "List 3"


class TestBulkDelete:
    async def test_deletes_and_reports_missing(self, repo: BaseRepository):
        await repo.create_many([{"id": "a", "title": "A"}, {"id": "b", "title": "B"}])

        result = await repo.bulk_delete(["a", "ghost", "b"], BulkOptions(batch_size=2))

        assert result.results == ["a", "b"]
        assert [(error.index, error.id, error.error) for error in result.errors] == [
            (1, "ghost", RECORD_NOT_FOUND),
        ]
        assert await repo.count() == 0
