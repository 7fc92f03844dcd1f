"""任务仓储。

任务属于某个列表，可以声明对其他任务的依赖（依赖图必须无环）。
任务写入后会使所属列表的统计缓存失效。
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel
from sqlalchemy import Table, and_, func, select

from taskhub.dal.domain.exceptions import CircularReferenceError, EntityNotFoundError
from taskhub.dal.domain.models.tables import (
    ItemStatus,
    Priority,
    generate_id,
    item_dependencies_table,
    items_table,
    utcnow,
)
from taskhub.dal.domain.repository import (
    BaseRepository,
    BulkOptions,
    Entity,
    FilterCondition,
    FilterOperator,
    QueryOptions,
    SortCondition,
    SortDirection,
)
from taskhub.dal.domain.transaction import (
    OperationType,
    TransactionContext,
    TransactionCoordinator,
    transactional,
)
from taskhub.dal.infrastructure.cache import (
    CacheInvalidationStrategy,
    CachedRepositoryMixin,
    PerformanceCache,
    PerformanceMonitor,
    generate_key,
)
from taskhub.dal.infrastructure.database import DatabaseHandle
from taskhub.dal.repositories.lists import ListsRepository

if TYPE_CHECKING:
    from taskhub.dal.application.lifecycle import DataAccessLayer
    from taskhub.dal.application.registry import RepositoryRegistry


class ItemStatistics(BaseModel):
    """任务统计。

    productivity_score = max(0, 完成率 - 逾期率)，取值 0-100。
    """

    total_items: int = 0
    completed_items: int = 0
    overdue_items: int = 0
    status_counts: dict[str, int] = {}
    completion_rate: float = 0.0
    average_completion_time: float | None = None
    productivity_score: float = 0.0


class ItemsRepository(CachedRepositoryMixin, BaseRepository):
    """任务仓储。"""

    def __init__(
        self,
        handle: DatabaseHandle,
        coordinator: TransactionCoordinator,
        lists: ListsRepository,
        cache: PerformanceCache | None = None,
        monitor: PerformanceMonitor | None = None,
        *,
        bulk_options: BulkOptions | None = None,
        cache_enabled: bool = True,
        stats_ttl: float | None = 120.0,
        table: Table = items_table,
        dependencies_table: Table = item_dependencies_table,
    ) -> None:
        super().__init__(handle, table, id_factory=generate_id, bulk_options=bulk_options)
        self._init_cache(cache, monitor, enabled=cache_enabled)
        self._coordinator = coordinator
        self._lists = lists
        self._stats_ttl = stats_ttl
        self._dependencies = dependencies_table

    @property
    def coordinator(self) -> TransactionCoordinator:
        return self._coordinator

    async def _invalidate_for(self, *list_ids: Any) -> None:
        for list_id in {list_id for list_id in list_ids if list_id is not None}:
            await self.invalidate_cache(*CacheInvalidationStrategy.item_patterns(list_id))

    async def _next_position(self, list_id: Any) -> int:
        current = await self.handle.scalar(
            select(func.max(self.table.c.position)).where(self.table.c.list_id == list_id)
        )
        return 0 if current is None else current + 1

    # ------------------------------------------------------------------ 写入

    async def create(self, data: Mapping[str, Any]) -> Entity:
        """创建任务。未指定 position 时排在列表末尾。"""
        if data.get("position") is None and data.get("list_id") is not None:
            data = {**data, "position": await self._next_position(data["list_id"])}
        created = await super().create(data)
        await self._invalidate_for(created["list_id"])
        return created

    async def create_many(self, data_list: Sequence[Mapping[str, Any]]) -> list[Entity]:
        """批量创建任务。未指定 position 的任务按顺序依次排在各自列表末尾。"""
        rows = [dict(data) for data in data_list]
        next_positions: dict[Any, int] = {}
        for row in rows:
            list_id = row.get("list_id")
            if list_id is None:
                continue
            if list_id not in next_positions:
                next_positions[list_id] = await self._next_position(list_id)
            if row.get("position") is None:
                row["position"] = next_positions[list_id]
            next_positions[list_id] = max(next_positions[list_id], row["position"] + 1)
        created = await super().create_many(rows)
        await self._invalidate_for(*(item["list_id"] for item in created))
        return created

    async def update_by_id(self, entity_id: Any, partial: Mapping[str, Any]) -> Entity | None:
        updated = await super().update_by_id(entity_id, partial)
        if updated is None:
            return None
        if "list_id" in partial:
            # 原列表未知
            await self.invalidate_cache(*CacheInvalidationStrategy.item_patterns())
        else:
            await self._invalidate_for(updated["list_id"])
        return updated

    async def update_many(self, filters: Sequence[FilterCondition], data: Mapping[str, Any]) -> list[Entity]:
        updated = await super().update_many(filters, data)
        if not updated:
            return updated
        if "list_id" in data:
            await self.invalidate_cache(*CacheInvalidationStrategy.item_patterns())
        else:
            await self._invalidate_for(*(item["list_id"] for item in updated))
        return updated

    async def delete_many(self, filters: Sequence[FilterCondition]) -> int:
        deleted = await super().delete_many(filters)
        if deleted:
            await self.invalidate_cache(*CacheInvalidationStrategy.item_patterns())
        return deleted

    async def delete_by_id(self, entity_id: Any) -> bool:
        existing = await self.find_by_id(entity_id)
        if existing is None:
            return False
        deleted = await super().delete_by_id(entity_id)
        if deleted:
            await self._invalidate_for(existing["list_id"])
        return deleted

    async def mark_completed(self, item_id: Any, actual_duration: int | None = None) -> Entity | None:
        """标记完成。任务不存在时返回 None。"""
        values: dict[str, Any] = {
            "status": ItemStatus.COMPLETED.value,
            "completed_at": utcnow(),
        }
        if actual_duration is not None:
            values["actual_duration"] = actual_duration
        return await self.update_by_id(item_id, values)

    @transactional()
    async def _reorder(self, list_id: Any, ordered_ids: Sequence[Any], *, context: TransactionContext) -> list[Entity]:
        reordered: list[Entity] = []
        for index, item_id in enumerate(ordered_ids):
            rows = await self.handle.update(
                self.table,
                and_(self.table.c.id == item_id, self.table.c.list_id == list_id),
                {"position": index},
            )
            if rows:
                reordered.append(rows[0])
            else:
                self._logger.warning(f"任务 {item_id} 不在列表 {list_id} 中，跳过排序")
        self._coordinator.log_operation(
            context, OperationType.UPDATE, self.table.name, len(reordered),
            {"action": "reorder", "list_id": list_id},
        )
        return reordered

    async def reorder_in_list(self, list_id: Any, ordered_ids: Sequence[Any]) -> list[Entity]:
        return await self._reorder(list_id, ordered_ids)

    @transactional()
    async def _move(self, item_id: Any, list_id: Any, position: int | None, *, context: TransactionContext) -> tuple[Entity, Any]:
        item = await self.find_by_id(item_id)
        if item is None:
            raise EntityNotFoundError(self.table.name, item_id)
        if not await self._lists.exists(list_id):
            raise EntityNotFoundError(self._lists.table.name, list_id)
        target = await self._next_position(list_id) if position is None else max(position, 0)
        rows = await self.handle.update(
            self.table,
            self.table.c.id == item_id,
            {"list_id": list_id, "position": target},
        )
        self._coordinator.log_operation(
            context, OperationType.UPDATE, self.table.name, 1,
            {"action": "move", "id": item_id, "from_list": item["list_id"], "to_list": list_id},
        )
        return rows[0], item["list_id"]

    async def move_to_list(self, item_id: Any, list_id: Any, position: int | None = None) -> Entity:
        """把任务移动到另一个列表。

        Raises:
            EntityNotFoundError: 任务或目标列表不存在
        """
        moved, previous_list = await self._move(item_id, list_id, position)
        await self._invalidate_for(previous_list, list_id)
        return moved

    # ------------------------------------------------------------------ 查询

    async def find_by_list(
        self,
        list_id: Any,
        *,
        include_completed: bool = True,
        status: Sequence[ItemStatus | str] | None = None,
        priority: Sequence[Priority | str] | None = None,
        assigned_to: Sequence[str] | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[Entity]:
        """查询列表下的任务，按 position 升序。"""
        filters = [FilterCondition(field="list_id", value=list_id)]
        if not include_completed:
            filters.append(FilterCondition(field="status", operator=FilterOperator.NE, value=ItemStatus.COMPLETED.value))
        if status:
            filters.append(FilterCondition(
                field="status", operator=FilterOperator.IN, values=[ItemStatus(value).value for value in status],
            ))
        if priority:
            filters.append(FilterCondition(
                field="priority", operator=FilterOperator.IN, values=[Priority(value).value for value in priority],
            ))
        if assigned_to:
            filters.append(FilterCondition(field="assigned_to", operator=FilterOperator.IN, values=list(assigned_to)))
        return await self.find_all(
            QueryOptions(
                filters=filters,
                sorts=[SortCondition(field="position"), SortCondition(field="created_at")],
                limit=limit,
                offset=offset,
            )
        )

    async def get_overdue_items(self, assigned_to: str | None = None) -> list[Entity]:
        filters = [
            FilterCondition(field="due_date", operator=FilterOperator.LT, value=utcnow()),
            FilterCondition(
                field="status",
                operator=FilterOperator.NOT_IN,
                values=[ItemStatus.COMPLETED.value, ItemStatus.CANCELLED.value],
            ),
        ]
        if assigned_to is not None:
            filters.append(FilterCondition(field="assigned_to", value=assigned_to))
        return await self.find_all(
            QueryOptions(filters=filters, sorts=[SortCondition(field="due_date")])
        )

    async def search(self, text: str, list_id: Any | None = None, limit: int | None = None) -> list[Entity]:
        pattern = f"%{text}%"
        title = self.filter_builder().where("title", FilterOperator.ILIKE, pattern)
        description = self.filter_builder().where("description", FilterOperator.ILIKE, pattern)
        where = title.or_(description)
        if list_id is not None:
            where.where("list_id", FilterOperator.EQ, list_id)
        return await self.find_all(
            QueryOptions(
                sorts=[SortCondition(field="updated_at", direction=SortDirection.DESC)],
                limit=limit,
            ),
            where=where,
        )

    async def get_item_statistics(self, list_id: Any | None = None, assigned_to: str | None = None) -> ItemStatistics:
        """按列表和/或负责人统计任务，结果经由缓存。"""
        key = generate_key("stats", {"list_id": list_id, "assigned_to": assigned_to}, prefix="repo:items")

        async def produce() -> ItemStatistics:
            status = self.table.c.status
            statement = select(status, func.count().label("count")).group_by(status)
            overdue = select(func.count()).select_from(self.table).where(
                self.table.c.due_date.is_not(None),
                self.table.c.due_date < utcnow(),
                status != ItemStatus.COMPLETED.value,
            )
            duration = select(func.avg(self.table.c.actual_duration)).where(
                status == ItemStatus.COMPLETED.value,
                self.table.c.actual_duration.is_not(None),
                self.table.c.actual_duration > 0,
            )
            for column, value in (("list_id", list_id), ("assigned_to", assigned_to)):
                if value is not None:
                    condition = self.columns.get(column) == value
                    statement = statement.where(condition)
                    overdue = overdue.where(condition)
                    duration = duration.where(condition)

            counts = {row["status"]: int(row["count"]) for row in await self.handle.fetch_all(statement)}
            total = sum(counts.values())
            completed = counts.get(ItemStatus.COMPLETED.value, 0)
            overdue_count = int(await self.handle.scalar(overdue) or 0)
            average = await self.handle.scalar(duration)

            completion_rate = completed / total * 100 if total else 0.0
            overdue_rate = overdue_count / total * 100 if total else 0.0
            return ItemStatistics(
                total_items=total,
                completed_items=completed,
                overdue_items=overdue_count,
                status_counts=counts,
                completion_rate=round(completion_rate, 2),
                average_completion_time=float(average) if average is not None else None,
                productivity_score=round(max(0.0, completion_rate - overdue_rate), 2),
            )

        return await self.execute_with_cache(key, produce, ttl=self._stats_ttl)

    # ------------------------------------------------------------------ 依赖

    async def _dependency_ids(self, item_id: Any) -> list[Any]:
        deps = self._dependencies
        rows = await self.handle.fetch_all(select(deps.c.depends_on_id).where(deps.c.item_id == item_id))
        return [row["depends_on_id"] for row in rows]

    async def _would_create_cycle(self, item_id: Any, depends_on_id: Any) -> bool:
        """从 depends_on_id 沿依赖边深度优先搜索，能到达 item_id 即成环。"""
        stack = [depends_on_id]
        visited: set[Any] = set()
        while stack:
            current = stack.pop()
            if current == item_id:
                return True
            if current in visited:
                continue
            visited.add(current)
            stack.extend(await self._dependency_ids(current))
        return False

    @transactional()
    async def _add_dependency(self, item_id: Any, depends_on_id: Any, *, context: TransactionContext) -> bool:
        found = await self.find_by_ids([item_id, depends_on_id])
        found_ids = {row["id"] for row in found}
        for missing in (item_id, depends_on_id):
            if missing not in found_ids:
                raise EntityNotFoundError(self.table.name, missing)
        if await self._would_create_cycle(item_id, depends_on_id):
            raise CircularReferenceError(
                item_id,
                depends_on_id,
                f"Circular dependency: {item_id} cannot depend on {depends_on_id}",
            )
        if depends_on_id in await self._dependency_ids(item_id):
            return False
        await self.handle.insert(
            self._dependencies,
            [{"item_id": item_id, "depends_on_id": depends_on_id, "created_at": utcnow()}],
        )
        self._coordinator.log_operation(
            context, OperationType.INSERT, self._dependencies.name, 1,
            {"action": "add_dependency", "item_id": item_id, "depends_on_id": depends_on_id},
        )
        return True

    async def add_dependency(self, item_id: Any, depends_on_id: Any) -> bool:
        """声明 item_id 依赖 depends_on_id。已存在时返回 False。

        Raises:
            CircularReferenceError: 自依赖或会形成依赖环
            EntityNotFoundError: 任一任务不存在
        """
        return await self._add_dependency(item_id, depends_on_id)

    async def remove_dependency(self, item_id: Any, depends_on_id: Any) -> bool:
        deps = self._dependencies
        removed = await self.handle.delete(
            deps, and_(deps.c.item_id == item_id, deps.c.depends_on_id == depends_on_id)
        )
        return removed > 0

    async def get_dependencies(self, item_id: Any) -> list[Entity]:
        """item_id 依赖的任务。"""
        return await self.find_by_ids(await self._dependency_ids(item_id))

    async def get_dependents(self, item_id: Any) -> list[Entity]:
        """依赖 item_id 的任务。"""
        deps = self._dependencies
        rows = await self.handle.fetch_all(select(deps.c.item_id).where(deps.c.depends_on_id == item_id))
        return await self.find_by_ids([row["item_id"] for row in rows])

    async def can_start(self, item_id: Any) -> bool:
        """所有依赖都已完成时才能开始。"""
        deps = self._dependencies
        blocking = await self.handle.scalar(
            select(func.count())
            .select_from(deps.join(self.table, deps.c.depends_on_id == self.table.c.id))
            .where(deps.c.item_id == item_id, self.table.c.status != ItemStatus.COMPLETED.value)
        )
        return not blocking


def register(registry: RepositoryRegistry, dal: DataAccessLayer) -> None:
    """向注册中心登记任务仓储，依赖列表仓储。"""
    settings = dal.settings

    def factory(lists: ListsRepository) -> ItemsRepository:
        return ItemsRepository(
            dal.handle,
            dal.coordinator,
            lists,
            dal.cache,
            dal.monitor,
            bulk_options=BulkOptions(
                batch_size=settings.bulk.batch_size,
                continue_on_error=settings.bulk.continue_on_error,
            ),
            cache_enabled=settings.cache.enabled,
            stats_ttl=settings.cache.stats_ttl,
        )

    registry.register(
        "items",
        factory,
        dependencies=["lists"],
        singleton=True,
        lazy=True,
        description="任务仓储",
    )


__all__ = [
    "ItemStatistics",
    "ItemsRepository",
    "register",
]
