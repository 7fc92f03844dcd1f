"""事务协调器测试。"""

from __future__ import annotations

import asyncio
import time

import pytest

from taskhub.dal.domain.exceptions import CircularReferenceError, TransactionTimeoutError
from taskhub.dal.domain.models import lists_table
from taskhub.dal.domain.repository import BaseRepository
from taskhub.dal.domain.transaction import (
    OperationType,
    TransactionContext,
    TransactionCoordinator,
    TransactionOptions,
)
from taskhub.dal.infrastructure.database import DatabaseHandle


async def insert_list(handle: DatabaseHandle, list_id: str) -> None:
    await handle.insert(lists_table, [{"id": list_id, "title": list_id, "position": 0,
                                       "priority": "medium", "status": "active"}])


class TestExecuteTransaction:
    async def test_success_returns_result_and_operation_count(
        self, coordinator: TransactionCoordinator, repo: BaseRepository
    ):
        async def work(handle: DatabaseHandle, context: TransactionContext) -> str:
            await repo.create({"id": "a", "title": "A"})
            coordinator.log_operation(context, OperationType.INSERT, "lists", 1)
            coordinator.log_operation(context, "select", "lists")
            return "done"

        result = await coordinator.execute_transaction(work)

        assert result.success is True
        assert result.result == "done"
        assert result.error is None
        assert result.operations_count == 2
        assert result.context.operations[0].type == OperationType.INSERT
        assert await repo.exists("a")

    async def test_failure_rolls_back(self, coordinator: TransactionCoordinator, repo: BaseRepository):
        boom = ValueError("boom")

        async def work(handle: DatabaseHandle, context: TransactionContext) -> None:
            await repo.create({"id": "a", "title": "A"})
            raise boom

        result = await coordinator.execute_transaction(work)

        assert result.success is False
        assert result.error is boom
        assert await repo.find_by_id("a") is None
        with pytest.raises(ValueError):
            result.unwrap()

    async def test_retries_until_success(self, coordinator: TransactionCoordinator, repo: BaseRepository):
        attempts = 0

        async def work(handle: DatabaseHandle, context: TransactionContext) -> int:
            nonlocal attempts
            attempts += 1
            await insert_list(handle, f"attempt-{attempts}")
            if attempts < 3:
                raise RuntimeError("transient")
            return attempts

        result = await coordinator.execute_transaction(
            work, TransactionOptions(retry_attempts=2, retry_delay=0)
        )

        assert result.success is True
        assert result.result == 3
        assert result.context.attempt == 3
        assert [row["id"] for row in await repo.find_all()] == ["attempt-3"]

    async def test_gives_up_after_retry_budget(self, coordinator: TransactionCoordinator):
        attempts = 0

        async def work(handle: DatabaseHandle, context: TransactionContext) -> None:
            nonlocal attempts
            attempts += 1
            raise RuntimeError("always")

        result = await coordinator.execute_transaction(work, TransactionOptions(retry_attempts=1, retry_delay=0))

        assert result.success is False
        assert attempts == 2

    async def test_circular_reference_is_never_retried(self, coordinator: TransactionCoordinator):
        attempts = 0

        async def work(handle: DatabaseHandle, context: TransactionContext) -> None:
            nonlocal attempts
            attempts += 1
            raise CircularReferenceError("a", "b")

        result = await coordinator.execute_transaction(work, TransactionOptions(retry_attempts=3, retry_delay=0))

        assert attempts == 1
        assert isinstance(result.error, CircularReferenceError)

    async def test_linear_backoff_between_attempts(self, handle: DatabaseHandle):
        coordinator = TransactionCoordinator(handle, retry_base_delay=0.05)
        attempts = 0

        async def work(handle: DatabaseHandle, context: TransactionContext) -> None:
            nonlocal attempts
            attempts += 1
            raise RuntimeError("transient")

        started = time.perf_counter()
        result = await coordinator.execute_transaction(work, TransactionOptions(retry_attempts=2))

        assert attempts == 3
        assert result.context.attempt == 3
        # 0.05s + 0.10s
        assert time.perf_counter() - started >= 0.15
        assert isinstance(result.error, RuntimeError)

    async def test_timeout_is_retried(self, coordinator: TransactionCoordinator):
        attempts = 0

        async def work(handle: DatabaseHandle, context: TransactionContext) -> str:
            nonlocal attempts
            attempts += 1
            if attempts == 1:
                await asyncio.sleep(5)
            return "second try"

        result = await coordinator.execute_transaction(
            work, TransactionOptions(timeout=0.05, retry_attempts=1, retry_delay=0)
        )

        assert result.success is True
        assert result.result == "second try"
        assert attempts == 2

    async def test_timeout_rolls_back(self, coordinator: TransactionCoordinator, repo: BaseRepository):
        async def work(handle: DatabaseHandle, context: TransactionContext) -> None:
            await insert_list(handle, "slow")
            await asyncio.sleep(5)

        result = await coordinator.execute_transaction(work, TransactionOptions(timeout=0.05))

        assert result.success is False
        assert isinstance(result.error, TransactionTimeoutError)
        assert str(result.error) == "Transaction timeout after 50ms"
        assert await repo.find_by_id("slow") is None

    async def test_read_only_never_commits(self, coordinator: TransactionCoordinator, repo: BaseRepository):
        async def work(handle: DatabaseHandle, context: TransactionContext) -> int:
            await insert_list(handle, "ghost")
            return await repo.count()

        result = await coordinator.execute_transaction(work, TransactionOptions(read_only=True))

        assert result.result == 1
        assert await repo.count() == 0

    async def test_active_transactions_tracked(self, coordinator: TransactionCoordinator):
        seen: list[str] = []

        async def work(handle: DatabaseHandle, context: TransactionContext) -> None:
            seen.extend(ctx.id for ctx in coordinator.get_active_transactions())
            assert coordinator.get_transaction(context.id) is context

        result = await coordinator.execute_transaction(work)

        assert result.success is True
        assert len(seen) == 1
        assert coordinator.get_active_transactions() == []

    async def test_execute_atomic_is_all_or_nothing(self, coordinator: TransactionCoordinator, repo: BaseRepository):
        async def first(handle: DatabaseHandle, context: TransactionContext) -> str:
            await insert_list(handle, "one")
            return "one"

        async def second(handle: DatabaseHandle, context: TransactionContext) -> str:
            await insert_list(handle, "two")
            return "two"

        async def failing(handle: DatabaseHandle, context: TransactionContext) -> None:
            raise RuntimeError("nope")

        ok = await coordinator.execute_atomic([first, second])
        assert ok.result == ["one", "two"]

        failed = await coordinator.execute_atomic([
            lambda h, c: insert_list(h, "three"),
            failing,
        ])
        assert failed.success is False
        assert await repo.find_by_id("three") is None
