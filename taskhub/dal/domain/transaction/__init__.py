"""事务协调器。

在数据库句柄的事务原语之上提供超时、重试和操作日志：
1. TransactionCoordinator.execute_transaction - 执行并把结果/错误收集到 TransactionResult
2. TransactionCoordinator.execute_atomic - 在同一事务中顺序执行多个操作
3. @transactional - 仓储方法装饰器，经由所属对象的协调器执行并直接返回结果

注意：重试会从头重新执行 fn，fn 在提交前必须没有外部副作用。
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from functools import wraps
import time
from typing import Any
import uuid

from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_fixed,
    wait_incrementing,
)
from tenacity.wait import wait_base

from taskhub.dal.common.logging import logger
from taskhub.dal.domain.exceptions import TransactionTimeoutError
from taskhub.dal.domain.models.tables import utcnow
from taskhub.dal.infrastructure.database.handle import DatabaseHandle


class OperationType(str, Enum):
    SELECT = "select"
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class IsolationLevel(str, Enum):
    READ_UNCOMMITTED = "READ UNCOMMITTED"
    READ_COMMITTED = "READ COMMITTED"
    REPEATABLE_READ = "REPEATABLE READ"
    SERIALIZABLE = "SERIALIZABLE"


@dataclass(slots=True)
class TransactionOperation:
    """事务内记录的一次操作。"""

    type: OperationType
    table: str
    row_count: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(slots=True)
class TransactionContext:
    """事务上下文，每次执行创建，只在内存中保存操作日志。"""

    id: str
    started_at: datetime = field(default_factory=utcnow)
    attempt: int = 1
    operations: list[TransactionOperation] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    _start: float = field(default_factory=time.perf_counter, repr=False)

    @property
    def elapsed(self) -> float:
        """已耗时（秒）。"""
        return time.perf_counter() - self._start

    def log_operation(
        self,
        type: OperationType | str,
        table: str,
        row_count: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> TransactionOperation:
        operation = TransactionOperation(
            type=OperationType(type),
            table=table,
            row_count=row_count,
            metadata=metadata or {},
        )
        self.operations.append(operation)
        return operation


@dataclass(slots=True)
class TransactionOptions:
    """事务选项。为 None 的字段使用协调器默认值。

    Attributes:
        timeout: 超时时间（秒）
        retry_attempts: 首次失败后的重试次数
        retry_delay: 固定重试间隔（秒）；为 None 时按尝试次数线性退避
        read_only: 只读事务，结束时始终回滚
        isolation_level: 隔离级别
    """

    timeout: float | None = None
    retry_attempts: int | None = None
    retry_delay: float | None = None
    read_only: bool = False
    isolation_level: IsolationLevel | str | None = None


@dataclass(slots=True)
class TransactionResult[T]:
    """事务执行结果。失败不抛出，而是记录在 ``error`` 中。"""

    success: bool
    context: TransactionContext
    result: T | None = None
    error: BaseException | None = None
    duration: float = 0.0

    @property
    def operations_count(self) -> int:
        return len(self.context.operations)

    def unwrap(self) -> T:
        """成功时返回结果，失败时抛出原始错误。"""
        if self.error is not None:
            raise self.error
        return self.result  # type: ignore[return-value]


type TransactionFn[T] = Callable[[DatabaseHandle, TransactionContext], Awaitable[T]]


class TransactionCoordinator:
    """事务协调器。

    使用示例:
        coordinator = TransactionCoordinator(handle)

        async def move(handle: DatabaseHandle, context: TransactionContext) -> dict:
            row = await repo.update_by_id(list_id, {"parent_list_id": None})
            coordinator.log_operation(context, "update", "lists", 1)
            return row

        result = await coordinator.execute_transaction(move, TransactionOptions(retry_attempts=2))
        if not result.success:
            ...
    """

    def __init__(
        self,
        handle: DatabaseHandle,
        *,
        default_timeout: float = 30.0,
        default_retry_attempts: int = 0,
        default_retry_delay: float | None = None,
        retry_base_delay: float = 1.0,
    ) -> None:
        self._handle = handle
        self._default_timeout = default_timeout
        self._default_retry_attempts = default_retry_attempts
        self._default_retry_delay = default_retry_delay
        self._retry_base_delay = retry_base_delay
        self._active: dict[str, TransactionContext] = {}

    @property
    def handle(self) -> DatabaseHandle:
        return self._handle

    def _wait_strategy(self, options: TransactionOptions) -> wait_base:
        """固定间隔优先；未设置时按尝试次数线性退避（base, 2*base, ...）。"""
        delay = options.retry_delay if options.retry_delay is not None else self._default_retry_delay
        if delay is not None:
            return wait_fixed(delay)
        return wait_incrementing(start=self._retry_base_delay, increment=self._retry_base_delay)

    @staticmethod
    def _is_retryable(error: BaseException) -> bool:
        # 取消等非 Exception 错误直接传播
        return isinstance(error, Exception) and getattr(error, "retryable", True)

    async def execute_transaction[T](
        self,
        fn: TransactionFn[T],
        options: TransactionOptions | None = None,
    ) -> TransactionResult[T]:
        """在事务中执行 fn，失败时回滚并按策略重试。

        每次尝试都是一个独立的数据库事务，并单独计算超时。

        Args:
            fn: ``async fn(handle, context)``
            options: 事务选项

        Returns:
            TransactionResult: 成功时包含 fn 的返回值，失败时包含最后一次的原始错误（超时为
            TransactionTimeoutError）
        """
        options = options or TransactionOptions()
        timeout = options.timeout if options.timeout is not None else self._default_timeout
        retries = options.retry_attempts if options.retry_attempts is not None else self._default_retry_attempts
        isolation = options.isolation_level.value if isinstance(options.isolation_level, IsolationLevel) else options.isolation_level

        # 嵌套在外层事务中时无法单独回滚，不做重试
        if self._handle.in_transaction():
            retries = 0

        context = TransactionContext(id=f"txn_{uuid.uuid4().hex[:12]}", attempt=0)
        max_attempts = 1 + max(retries, 0)

        async def attempt_once() -> T:
            context.attempt += 1
            context.operations.clear()
            logger.debug(f"事务开始: {context.id} (第 {context.attempt}/{max_attempts} 次)")
            try:
                return await asyncio.wait_for(
                    self._handle.transaction(
                        lambda handle: fn(handle, context),
                        read_only=options.read_only,
                        isolation_level=isolation,
                    ),
                    timeout,
                )
            except TimeoutError:
                error: Exception = TransactionTimeoutError(timeout)
            except Exception as exc:
                error = exc
            logger.error(f"事务回滚: {context.id} | 第 {context.attempt} 次 | {type(error).__name__}: {error}")
            raise error

        retrying = AsyncRetrying(
            stop=stop_after_attempt(max_attempts),
            wait=self._wait_strategy(options),
            retry=retry_if_exception(self._is_retryable),
            before_sleep=lambda state: logger.warning(
                f"事务重试: {context.id} | {state.next_action.sleep:.3f}s 后进行第 "
                f"{state.attempt_number + 1} 次尝试"
            ),
            reraise=True,
        )

        self._active[context.id] = context
        try:
            result = await retrying(attempt_once)
        except Exception as exc:
            return TransactionResult(success=False, context=context, error=exc, duration=context.elapsed)
        finally:
            self._active.pop(context.id, None)

        duration = context.elapsed
        logger.debug(
            f"事务提交成功: {context.id} | 操作数: {len(context.operations)} | 耗时: {duration:.3f}s"
        )
        return TransactionResult(success=True, context=context, result=result, duration=duration)

    async def execute_atomic(
        self,
        operations: Sequence[TransactionFn[Any]],
        options: TransactionOptions | None = None,
    ) -> TransactionResult[list[Any]]:
        """在同一个事务中顺序执行多个操作，任一失败则全部回滚。"""

        async def run_all(handle: DatabaseHandle, context: TransactionContext) -> list[Any]:
            return [await operation(handle, context) for operation in operations]

        return await self.execute_transaction(run_all, options)

    def log_operation(
        self,
        context: TransactionContext,
        type: OperationType | str,
        table: str,
        row_count: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """记录事务内的一次操作（仅用于审计与调试，不持久化）。"""
        operation = context.log_operation(type, table, row_count, metadata)
        logger.debug(
            f"事务操作: {context.id} | {operation.type.value} {table}"
            + (f" | 行数: {row_count}" if row_count is not None else "")
        )

    def get_active_transactions(self) -> list[TransactionContext]:
        return list(self._active.values())

    def get_transaction(self, transaction_id: str) -> TransactionContext | None:
        return self._active.get(transaction_id)


def transactional(**option_overrides: Any) -> Callable:
    """仓储方法事务装饰器。

    经由 ``self.coordinator`` 执行被装饰的方法，并以关键字参数 ``context`` 传入事务上下文。
    失败时抛出原始错误。

    用法示例:
        class ListsRepository(BaseRepository):
            @transactional(timeout=10)
            async def reorder(self, parent_id, ids, *, context: TransactionContext):
                ...
    """
    options = TransactionOptions(**option_overrides)

    def decorator[T](func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(self: Any, *args: Any, **kwargs: Any) -> T:
            coordinator: TransactionCoordinator | None = getattr(self, "coordinator", None)
            if coordinator is None:
                raise ValueError(f"{type(self).__name__} 没有 coordinator 属性，无法执行 {func.__name__}")

            async def run(handle: DatabaseHandle, context: TransactionContext) -> T:
                return await func(self, *args, context=context, **kwargs)

            result = await coordinator.execute_transaction(run, options)
            return result.unwrap()

        return wrapper
    return decorator


__all__ = [
    "IsolationLevel",
    "OperationType",
    "TransactionContext",
    "TransactionCoordinator",
    "TransactionFn",
    "TransactionOperation",
    "TransactionOptions",
    "TransactionResult",
    "transactional",
]
