"""Domain 层仓储实现 - BaseRepository。

提供与实体类型无关的 CRUD、动态过滤/排序组合以及批量操作引擎。
实体以字典形式表示，表结构由 SQLAlchemy Core Table 描述。
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping, Sequence
from typing import Any

from sqlalchemy import Table, func, select
from sqlalchemy.sql.expression import ColumnElement

from taskhub.dal.common.logging import get_class_logger
from taskhub.dal.domain.repository.columns import ColumnRegistry
from taskhub.dal.domain.repository.query_builder import (
    FilterBuilder,
    QueryBuilder,
    build_conditions,
)
from taskhub.dal.domain.repository.types import (
    BulkError,
    BulkOperationResult,
    BulkOptions,
    BulkUpdateItem,
    Entity,
    FilterCondition,
    PaginationResult,
    QueryOptions,
    SortCondition,
)
from taskhub.dal.infrastructure.database.handle import DatabaseHandle

RECORD_NOT_FOUND = "Record not found"

# 批量操作中单个条目的处理结果：成功值或错误
type _Outcome = Any | BulkError


class BaseRepository:
    """仓储基类实现。提供通用 CRUD 操作。

    子类只需提供表和主键：

        class ListsRepository(BaseRepository):
            def __init__(self, handle: DatabaseHandle) -> None:
                super().__init__(handle, lists_table, id_factory=generate_id)

    未找到单个实体时 ``find_by_id``/``update_by_id`` 返回 None，``delete_by_id`` 返回 False。
    """

    def __init__(
        self,
        handle: DatabaseHandle,
        table: Table,
        *,
        primary_key: str = "id",
        id_factory: Callable[[], Any] | None = None,
        bulk_options: BulkOptions | None = None,
    ) -> None:
        self._handle = handle
        self._columns = ColumnRegistry(table, primary_key)
        self._id_factory = id_factory
        self._bulk_defaults = bulk_options or BulkOptions()
        self._logger = get_class_logger(self)
        self._logger.debug(f"初始化 {self.__class__.__name__} (表: {table.name})")

    @property
    def handle(self) -> DatabaseHandle:
        return self._handle

    @property
    def table(self) -> Table:
        return self._columns.table

    @property
    def columns(self) -> ColumnRegistry:
        return self._columns

    @property
    def bulk_defaults(self) -> BulkOptions:
        return self._bulk_defaults

    def filter_builder(self) -> FilterBuilder:
        """创建绑定本表的过滤构建器，用于 OR 组合。"""
        return FilterBuilder(self._columns)

    def query(self, options: QueryOptions | None = None, where: FilterBuilder | None = None) -> QueryBuilder:
        return QueryBuilder.from_options(self._columns, options, where)

    def _pk_equals(self, entity_id: Any) -> ColumnElement[bool]:
        return self._columns.primary_key == entity_id

    def _where(
        self,
        filters: Sequence[FilterCondition] | None,
        where: FilterBuilder | None,
    ) -> ColumnElement[bool] | None:
        return QueryBuilder(self._columns).filter(*(filters or ())).filter_by(
            *([where] if where is not None else [])
        ).where_clause()

    def _prepare_insert(self, data: Mapping[str, Any]) -> Entity:
        row = self._columns.validate_data(data)
        pk = self._columns.primary_key_name
        if row.get(pk) is None and self._id_factory is not None:
            row[pk] = self._id_factory()
        return self._columns.apply_defaults(row)

    def _prepare_update(self, partial: Mapping[str, Any]) -> Entity:
        values = self._columns.validate_data(partial)
        values.pop(self._columns.primary_key_name, None)
        return values

    # ------------------------------------------------------------------ 查询

    async def find_by_id(self, entity_id: Any) -> Entity | None:
        """按主键获取实体。"""
        return await self._handle.fetch_one(select(self.table).where(self._pk_equals(entity_id)))

    async def find_by_ids(self, ids: Sequence[Any]) -> list[Entity]:
        if not ids:
            return []
        return await self._handle.fetch_all(
            select(self.table).where(self._columns.primary_key.in_(list(ids)))
        )

    async def find_all(
        self,
        options: QueryOptions | None = None,
        *,
        where: FilterBuilder | None = None,
    ) -> list[Entity]:
        """按选项查询实体。

        过滤条件以 AND 组合；需要 OR 时传入 ``where`` 构建器，
        它与 ``options.filters`` 再以 AND 组合。
        """
        statement = self.query(options, where).build()
        return await self._handle.fetch_all(statement)

    async def find_one(
        self,
        options: QueryOptions | None = None,
        *,
        where: FilterBuilder | None = None,
    ) -> Entity | None:
        options = (options or QueryOptions()).model_copy(update={"limit": 1})
        rows = await self.find_all(options, where=where)
        return rows[0] if rows else None

    async def count(
        self,
        filters: Sequence[FilterCondition] | None = None,
        *,
        where: FilterBuilder | None = None,
    ) -> int:
        statement = select(func.count()).select_from(self.table)
        condition = self._where(filters, where)
        if condition is not None:
            statement = statement.where(condition)
        return int(await self._handle.scalar(statement) or 0)

    async def exists(self, entity_id: Any) -> bool:
        statement = select(func.count()).select_from(self.table).where(self._pk_equals(entity_id))
        return bool(await self._handle.scalar(statement))

    async def paginate(
        self,
        page: int = 1,
        size: int = 20,
        filters: Sequence[FilterCondition] | None = None,
        sorts: Sequence[SortCondition] | None = None,
    ) -> PaginationResult[Entity]:
        """分页查询。

        Args:
            page: 页码，从 1 开始
            size: 每页条数
            filters: 过滤条件
            sorts: 排序条件

        Returns:
            PaginationResult: 当前页数据和总数
        """
        page = max(page, 1)
        size = max(size, 1)
        options = QueryOptions(
            filters=list(filters or []),
            sorts=list(sorts or []),
            limit=size,
            offset=(page - 1) * size,
        )
        items = await self.find_all(options)
        total = await self.count(options.filters)
        return PaginationResult[Entity](items=items, total=total, page=page, size=size)

    # ------------------------------------------------------------------ 写入

    async def create(self, data: Mapping[str, Any]) -> Entity:
        rows = await self._handle.insert(self.table, [self._prepare_insert(data)])
        self._logger.debug(f"创建 {self.table.name} 实体: {rows[0][self._columns.primary_key_name]}")
        return rows[0]

    async def create_many(self, data_list: Sequence[Mapping[str, Any]]) -> list[Entity]:
        """单条语句插入多行。空输入不访问数据库。"""
        if not data_list:
            return []
        rows = [self._prepare_insert(data) for data in data_list]
        # 多行插入要求各行字段一致，缺失的可空字段补 None
        keys = set().union(*(row.keys() for row in rows))
        rows = [{key: row.get(key) for key in keys} for row in rows]
        created = await self._handle.insert(self.table, rows)
        self._logger.debug(f"批量创建 {len(created)} 个 {self.table.name} 实体")
        return created

    async def update_by_id(self, entity_id: Any, partial: Mapping[str, Any]) -> Entity | None:
        """按主键部分更新。实体不存在时返回 None。"""
        values = self._prepare_update(partial)
        if not values:
            return await self.find_by_id(entity_id)
        rows = await self._handle.update(self.table, self._pk_equals(entity_id), values)
        if not rows:
            self._logger.debug(f"更新 {self.table.name} 实体失败，不存在: {entity_id}")
            return None
        self._logger.debug(f"更新 {self.table.name} 实体: {entity_id}")
        return rows[0]

    async def update_many(
        self,
        filters: Sequence[FilterCondition],
        data: Mapping[str, Any],
    ) -> list[Entity]:
        """更新所有匹配的实体。没有过滤条件时不做任何修改。"""
        condition = self._where(filters, None)
        values = self._prepare_update(data)
        if condition is None or not values:
            return []
        rows = await self._handle.update(self.table, condition, values)
        self._logger.debug(f"批量更新 {len(rows)} 个 {self.table.name} 实体")
        return rows

    async def delete_by_id(self, entity_id: Any) -> bool:
        """按主键删除。实体不存在时返回 False。"""
        deleted = await self._handle.delete(self.table, self._pk_equals(entity_id))
        if deleted:
            self._logger.debug(f"删除 {self.table.name} 实体: {entity_id}")
        return deleted > 0

    async def delete_many(self, filters: Sequence[FilterCondition]) -> int:
        """删除所有匹配的实体。没有过滤条件时不做任何删除。"""
        condition = build_conditions(self._columns, filters)
        if condition is None:
            return 0
        deleted = await self._handle.delete(self.table, condition)
        self._logger.debug(f"批量删除 {deleted} 个 {self.table.name} 实体")
        return deleted

    # ------------------------------------------------------------------ 批量操作

    async def _execute_bulk(
        self,
        operation: str,
        items: Sequence[Any],
        options: BulkOptions,
        grouped: Callable[[int, Sequence[Any]], Awaitable[list[_Outcome]]],
        single: Callable[[int, Any], Awaitable[_Outcome]],
        item_id: Callable[[Any], Any] | None = None,
    ) -> BulkOperationResult[Any]:
        """分批执行批量操作。

        每批先整体执行；失败时按 ``continue_on_error`` 决定：
        - True: 该批降级为逐条执行，只记录真正失败的条目
        - False: 从该批起所有未成功的条目记为失败（使用批次错误信息），不再处理后续批次
        """
        results: list[Any] = []
        errors: list[BulkError] = []
        total = len(items)

        def _error(index: int, message: str) -> BulkError:
            return BulkError(
                index=index,
                id=item_id(items[index]) if item_id is not None else None,
                error=message,
            )

        for start in range(0, total, options.batch_size):
            batch = items[start:start + options.batch_size]
            try:
                outcomes = await grouped(start, batch)
            except Exception as exc:
                if not options.continue_on_error:
                    self._logger.error(
                        f"{operation} 批次 [{start}, {start + len(batch)}) 失败，终止剩余 "
                        f"{total - start} 条: {exc}"
                    )
                    errors.extend(_error(index, str(exc)) for index in range(start, total))
                    break

                self._logger.warning(
                    f"{operation} 批次 [{start}, {start + len(batch)}) 失败，降级为逐条处理: {exc}"
                )
                outcomes = []
                for offset, item in enumerate(batch):
                    try:
                        outcomes.append(await single(start + offset, item))
                    except Exception as item_exc:
                        outcomes.append(_error(start + offset, str(item_exc)))

            for outcome in outcomes:
                if isinstance(outcome, BulkError):
                    errors.append(outcome)
                else:
                    results.append(outcome)

        result = BulkOperationResult[Any](results=results, errors=errors)
        self._logger.debug(
            f"{operation} 完成: 共 {result.summary.total} 条，"
            f"成功 {result.summary.successful}，失败 {result.summary.failed}"
        )
        return result

    async def bulk_create(
        self,
        items: Sequence[Mapping[str, Any]],
        options: BulkOptions | None = None,
    ) -> BulkOperationResult[Entity]:
        """批量创建，每批通过 ``create_many`` 单条语句插入。"""
        if not items:
            return BulkOperationResult[Entity]()

        async def grouped(start: int, batch: Sequence[Mapping[str, Any]]) -> list[_Outcome]:
            return await self.create_many(batch)

        async def single(index: int, item: Mapping[str, Any]) -> _Outcome:
            return await self.create(item)

        return await self._execute_bulk(
            "bulk_create", list(items), options or self._bulk_defaults, grouped, single
        )

    async def bulk_update(
        self,
        updates: Sequence[BulkUpdateItem | Mapping[str, Any]],
        options: BulkOptions | None = None,
    ) -> BulkOperationResult[Entity]:
        """批量更新，每批在一个事务中执行。不存在的记录记为 ``Record not found``。"""
        if not updates:
            return BulkOperationResult[Entity]()
        parsed = [BulkUpdateItem.model_validate(update) for update in updates]

        async def single(index: int, item: BulkUpdateItem) -> _Outcome:
            updated = await self.update_by_id(item.id, item.data)
            if updated is None:
                return BulkError(index=index, id=item.id, error=RECORD_NOT_FOUND)
            return updated

        async def grouped(start: int, batch: Sequence[BulkUpdateItem]) -> list[_Outcome]:
            async def work(handle: DatabaseHandle) -> list[_Outcome]:
                return [await single(start + offset, item) for offset, item in enumerate(batch)]

            return await self._handle.transaction(work)

        return await self._execute_bulk(
            "bulk_update", parsed, options or self._bulk_defaults, grouped, single,
            item_id=lambda item: item.id,
        )

    async def bulk_delete(
        self,
        ids: Sequence[Any],
        options: BulkOptions | None = None,
    ) -> BulkOperationResult[Any]:
        """批量删除，结果为已删除的主键。不存在的记录记为 ``Record not found``。"""
        if not ids:
            return BulkOperationResult[Any]()

        async def single(index: int, entity_id: Any) -> _Outcome:
            if await self.delete_by_id(entity_id):
                return entity_id
            return BulkError(index=index, id=entity_id, error=RECORD_NOT_FOUND)

        async def grouped(start: int, batch: Sequence[Any]) -> list[_Outcome]:
            async def work(handle: DatabaseHandle) -> list[_Outcome]:
                return [await single(start + offset, entity_id) for offset, entity_id in enumerate(batch)]

            return await self._handle.transaction(work)

        return await self._execute_bulk(
            "bulk_delete", list(ids), options or self._bulk_defaults, grouped, single,
            item_id=lambda entity_id: entity_id,
        )

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} table={self.table.name}>"


__all__ = [
    "RECORD_NOT_FOUND",
    "BaseRepository",
]
