"""数据库句柄。

对 AsyncEngine 的薄封装，仓储只通过这里执行语句：
- 查询返回字典形式的实体
- insert/update 使用 RETURNING 返回行，delete 返回影响行数
- transaction() 把连接绑定到当前任务，期间的所有语句共享同一个数据库事务
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Awaitable, Callable, Sequence
from contextlib import asynccontextmanager
from contextvars import ContextVar
from typing import Any

from sqlalchemy import Table, delete, insert, text, update
from sqlalchemy.sql.expression import ColumnElement, Executable
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from taskhub.dal.common.logging import logger

Entity = dict[str, Any]

# 当前任务绑定的事务连接
_current_connection: ContextVar[AsyncConnection | None] = ContextVar(
    "taskhub_dal_connection",
    default=None,
)


class DatabaseHandle:
    """数据库句柄。

    使用示例:
        handle = DatabaseHandle(engine)
        rows = await handle.fetch_all(select(lists_table))

        async def work(h: DatabaseHandle) -> None:
            await h.insert(lists_table, [{"id": "a", "title": "A"}])
            await h.update(lists_table, lists_table.c.id == "a", {"title": "B"})

        await handle.transaction(work)
    """

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @property
    def dialect_name(self) -> str:
        return self._engine.dialect.name

    def in_transaction(self) -> bool:
        """当前任务是否已绑定事务。"""
        return _current_connection.get() is not None

    @asynccontextmanager
    async def _connection(self) -> AsyncGenerator[AsyncConnection]:
        connection = _current_connection.get()
        if connection is not None:
            yield connection
            return
        # 不在事务中时每条语句独立提交
        async with self._engine.begin() as connection:
            yield connection

    async def fetch_all(self, statement: Executable) -> list[Entity]:
        async with self._connection() as conn:
            result = await conn.execute(statement)
            return [dict(row._mapping) for row in result]

    async def fetch_one(self, statement: Executable) -> Entity | None:
        async with self._connection() as conn:
            result = await conn.execute(statement)
            row = result.first()
            return dict(row._mapping) if row is not None else None

    async def scalar(self, statement: Executable) -> Any:
        async with self._connection() as conn:
            result = await conn.execute(statement)
            return result.scalar()

    async def insert(self, table: Table, rows: Sequence[Entity]) -> list[Entity]:
        """插入多行并按参数顺序返回插入后的行。"""
        if not rows:
            return []
        statement = insert(table).returning(*table.columns, sort_by_parameter_order=True)
        async with self._connection() as conn:
            result = await conn.execute(statement, [dict(row) for row in rows])
            return [dict(row._mapping) for row in result]

    async def update(
        self,
        table: Table,
        where: ColumnElement[bool] | None,
        values: Entity,
    ) -> list[Entity]:
        """更新匹配的行并返回更新后的行。"""
        statement = update(table).values(**values).returning(*table.columns)
        if where is not None:
            statement = statement.where(where)
        async with self._connection() as conn:
            result = await conn.execute(statement)
            return [dict(row._mapping) for row in result]

    async def delete(self, table: Table, where: ColumnElement[bool] | None) -> int:
        """删除匹配的行，返回影响行数。"""
        statement = delete(table)
        if where is not None:
            statement = statement.where(where)
        async with self._connection() as conn:
            result = await conn.execute(statement)
            return result.rowcount

    async def transaction[T](
        self,
        fn: Callable[[DatabaseHandle], Awaitable[T]],
        *,
        read_only: bool = False,
        isolation_level: str | None = None,
    ) -> T:
        """在单个数据库事务中执行 fn。

        正常返回时提交，抛出异常（包括取消）时回滚；``read_only`` 时始终回滚。
        已在事务中时直接加入外层事务。

        Args:
            fn: 接收句柄的协程函数
            read_only: 是否只读
            isolation_level: 隔离级别（如 SERIALIZABLE），由方言解释

        Returns:
            fn 的返回值
        """
        if _current_connection.get() is not None:
            logger.debug("已在事务中，直接执行")
            return await fn(self)

        async with self._engine.connect() as conn:
            if isolation_level is not None:
                await conn.execution_options(isolation_level=isolation_level)
            trans = await conn.begin()
            token = _current_connection.set(conn)
            try:
                result = await fn(self)
            except BaseException as exc:
                await trans.rollback()
                logger.debug(f"数据库事务回滚: {type(exc).__name__}: {exc}")
                raise
            finally:
                _current_connection.reset(token)

            if read_only:
                await trans.rollback()
            else:
                await trans.commit()
            return result

    async def health_check(self) -> bool:
        """健康检查。"""
        try:
            async with self._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except Exception as exc:
            logger.error(f"数据库健康检查失败: {exc}")
            return False

    async def dispose(self) -> None:
        await self._engine.dispose()

    def __repr__(self) -> str:
        return f"<DatabaseHandle dialect={self.dialect_name}>"


__all__ = [
    "DatabaseHandle",
    "Entity",
]
