"""列表仓储。

列表是树形实体：``parent_list_id`` 指向父列表，``position`` 是兄弟节点间的排序键。
所有层级变更都在事务内完成，并在写入前检测环。
"""

from __future__ import annotations

from collections import deque
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel
from sqlalchemy import Table, and_, case, func, select
from sqlalchemy.sql.expression import ColumnElement

from taskhub.dal.common.logging import log_performance
from taskhub.dal.domain.exceptions import CircularReferenceError, EntityNotFoundError
from taskhub.dal.domain.models.tables import (
    ItemStatus,
    ListStatus,
    generate_id,
    items_table,
    lists_table,
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
    TransactionOptions,
    transactional,
)
from taskhub.dal.infrastructure.cache import (
    CacheInvalidationStrategy,
    CachedRepositoryMixin,
    PerformanceCache,
    PerformanceMonitor,
)
from taskhub.dal.infrastructure.database import DatabaseHandle

if TYPE_CHECKING:
    from taskhub.dal.application.lifecycle import DataAccessLayer
    from taskhub.dal.application.registry import RepositoryRegistry

TreeNode = dict[str, Any]

DEFAULT_LIST_ORDER = (
    SortCondition(field="position"),
    SortCondition(field="created_at"),
)


class ListStatistics(BaseModel):
    """列表下任务的统计。completion_rate 为百分比。"""

    total_items: int = 0
    completed_items: int = 0
    pending_items: int = 0
    in_progress_items: int = 0
    completion_rate: float = 0.0
    overdue_items: int = 0
    average_duration: float | None = None


class ListsRepository(CachedRepositoryMixin, BaseRepository):
    """列表仓储。

    在通用 CRUD 之上提供层级操作：移动、同级排序、级联归档、层级树与统计。
    """

    def __init__(
        self,
        handle: DatabaseHandle,
        coordinator: TransactionCoordinator,
        cache: PerformanceCache | None = None,
        monitor: PerformanceMonitor | None = None,
        *,
        bulk_options: BulkOptions | None = None,
        cache_enabled: bool = True,
        stats_ttl: float | None = 120.0,
        table: Table = lists_table,
        child_table: Table = items_table,
    ) -> None:
        super().__init__(handle, table, id_factory=generate_id, bulk_options=bulk_options)
        self._init_cache(cache, monitor, enabled=cache_enabled)
        self._coordinator = coordinator
        self._stats_ttl = stats_ttl
        self._child_table = child_table
        self._parent = self.columns.get("parent_list_id")
        self._position = self.columns.get("position")

    @property
    def coordinator(self) -> TransactionCoordinator:
        return self._coordinator

    def _parent_equals(self, parent_id: Any | None) -> ColumnElement[bool]:
        if parent_id is None:
            return self._parent.is_(None)
        return self._parent == parent_id

    async def _next_position(self, parent_id: Any | None, exclude_id: Any | None = None) -> int:
        statement = select(func.max(self._position)).where(self._parent_equals(parent_id))
        if exclude_id is not None:
            statement = statement.where(self.columns.primary_key != exclude_id)
        current = await self.handle.scalar(statement)
        return 0 if current is None else current + 1

    async def _shift_positions(
        self,
        parent_id: Any | None,
        from_position: int,
        delta: int,
        exclude_id: Any,
    ) -> int:
        """把某父节点下 position >= from_position 的兄弟节点整体平移 delta。"""
        rows = await self.handle.update(
            self.table,
            and_(
                self._parent_equals(parent_id),
                self._position >= from_position,
                self.columns.primary_key != exclude_id,
            ),
            {"position": self._position + delta},
        )
        return len(rows)

    async def _invalidate_lists(self) -> None:
        await self.invalidate_cache(*CacheInvalidationStrategy.list_patterns())

    async def _check_parent(self, list_id: Any, new_parent_id: Any | None) -> None:
        """校验 new_parent_id 可以作为 list_id 的父节点。"""
        if new_parent_id is None:
            return
        if await self._would_create_cycle(list_id, new_parent_id):
            raise CircularReferenceError(list_id, new_parent_id)
        if not await self.exists(new_parent_id):
            raise EntityNotFoundError(self.table.name, new_parent_id)

    async def create(self, data: Mapping[str, Any]) -> Entity:
        """创建列表。未指定 position 时排在同级末尾。"""
        if data.get("position") is None:
            data = {**data, "position": await self._next_position(data.get("parent_list_id"))}
        created = await super().create(data)
        await self._invalidate_lists()
        return created

    async def create_many(self, data_list: Sequence[Mapping[str, Any]]) -> list[Entity]:
        """批量创建列表。未指定 position 的列表按顺序依次排在各自同级末尾。"""
        rows = [dict(data) for data in data_list]
        next_positions: dict[Any, int] = {}
        for row in rows:
            parent_id = row.get("parent_list_id")
            if parent_id not in next_positions:
                next_positions[parent_id] = await self._next_position(parent_id)
            if row.get("position") is None:
                row["position"] = next_positions[parent_id]
            next_positions[parent_id] = max(next_positions[parent_id], row["position"] + 1)
        created = await super().create_many(rows)
        if created:
            await self._invalidate_lists()
        return created

    @transactional()
    async def _update_with_parent(
        self,
        list_id: Any,
        partial: Mapping[str, Any],
        *,
        context: TransactionContext,
    ) -> Entity | None:
        if not await self.exists(list_id):
            return None
        await self._check_parent(list_id, partial["parent_list_id"])
        updated = await super().update_by_id(list_id, partial)
        self._coordinator.log_operation(
            context, OperationType.UPDATE, self.table.name, 1,
            {"action": "update", "id": list_id, "to_parent": partial["parent_list_id"]},
        )
        return updated

    async def update_by_id(self, entity_id: Any, partial: Mapping[str, Any]) -> Entity | None:
        """部分更新列表。

        修改 ``parent_list_id`` 时在同一事务中先做环检测，成环抛出 CircularReferenceError。
        """
        if "parent_list_id" in partial:
            updated = await self._update_with_parent(entity_id, partial)
        else:
            updated = await super().update_by_id(entity_id, partial)
        if updated is not None:
            await self._invalidate_lists()
        return updated

    @transactional()
    async def _update_many_with_parent(
        self,
        filters: Sequence[FilterCondition],
        data: Mapping[str, Any],
        *,
        context: TransactionContext,
    ) -> list[Entity]:
        pk = self.columns.primary_key_name
        for row in await self.find_all(QueryOptions(filters=list(filters))):
            await self._check_parent(row[pk], data["parent_list_id"])
        updated = await super().update_many(filters, data)
        self._coordinator.log_operation(context, OperationType.UPDATE, self.table.name, len(updated))
        return updated

    async def update_many(self, filters: Sequence[FilterCondition], data: Mapping[str, Any]) -> list[Entity]:
        if not filters:
            return []
        if "parent_list_id" in data:
            updated = await self._update_many_with_parent(filters, data)
        else:
            updated = await super().update_many(filters, data)
        if updated:
            await self._invalidate_lists()
        return updated

    async def delete_by_id(self, entity_id: Any) -> bool:
        deleted = await super().delete_by_id(entity_id)
        if deleted:
            await self._invalidate_lists()
        return deleted

    async def delete_many(self, filters: Sequence[FilterCondition]) -> int:
        deleted = await super().delete_many(filters)
        if deleted:
            await self._invalidate_lists()
        return deleted

    # ------------------------------------------------------------------ 查询

    async def find_by_parent(self, parent_id: Any | None, options: QueryOptions | None = None) -> list[Entity]:
        """查询某父节点的子列表，默认按 (position, created_at) 升序。"""
        options = options or QueryOptions()
        builder = self.query(options).filter(FilterCondition(field="parent_list_id", value=parent_id))
        if not options.sorts:
            builder.order_by(*DEFAULT_LIST_ORDER)
        return await self.handle.fetch_all(builder.build())

    async def find_by_status(self, status: ListStatus | str | Sequence[ListStatus | str]) -> list[Entity]:
        statuses = [status] if isinstance(status, str) else list(status)
        return await self.find_all(
            QueryOptions(
                filters=[
                    FilterCondition(
                        field="status",
                        operator=FilterOperator.IN,
                        values=[ListStatus(value).value for value in statuses],
                    )
                ],
                sorts=list(DEFAULT_LIST_ORDER),
            )
        )

    async def search(self, text: str, limit: int | None = None) -> list[Entity]:
        """按标题或描述模糊搜索。"""
        pattern = f"%{text}%"
        title = self.filter_builder().where("title", FilterOperator.ILIKE, pattern)
        description = self.filter_builder().where("description", FilterOperator.ILIKE, pattern)
        return await self.find_all(
            QueryOptions(
                sorts=[SortCondition(field="updated_at", direction=SortDirection.DESC)],
                limit=limit,
            ),
            where=title.or_(description),
        )

    async def get_all_descendants(self, list_id: Any) -> list[Any]:
        """逐层广度优先收集所有后代 id（不含自身）。

        已访问的节点不会再次展开，数据中即使存在环也能终止。
        """
        descendants: list[Any] = []
        visited = {list_id}
        frontier: deque[Any] = deque([list_id])
        pk = self.columns.primary_key
        while frontier:
            level = list(frontier)
            frontier.clear()
            rows = await self.handle.fetch_all(select(pk).where(self._parent.in_(level)))
            for row in rows:
                child_id = row[pk.key]
                if child_id in visited:
                    self._logger.warning(f"检测到层级环，跳过节点: {child_id}")
                    continue
                visited.add(child_id)
                descendants.append(child_id)
                frontier.append(child_id)
        return descendants

    async def _would_create_cycle(self, list_id: Any, new_parent_id: Any) -> bool:
        """沿 new_parent_id 的祖先链向上查找 list_id。"""
        visited: set[Any] = set()
        current = new_parent_id
        while current is not None:
            if current == list_id:
                return True
            if current in visited:
                self._logger.warning(f"祖先链中已存在环: {current}")
                return True
            visited.add(current)
            current = await self.handle.scalar(
                select(self._parent).where(self.columns.primary_key == current)
            )
        return False

    # ------------------------------------------------------------------ 层级操作

    @transactional()
    async def _move(
        self,
        list_id: Any,
        new_parent_id: Any | None,
        position: int | None,
        *,
        context: TransactionContext,
    ) -> Entity:
        entity = await self.find_by_id(list_id)
        if entity is None:
            raise EntityNotFoundError(self.table.name, list_id)
        await self._check_parent(list_id, new_parent_id)

        old_parent_id = entity["parent_list_id"]
        closed = await self._shift_positions(old_parent_id, entity["position"] + 1, -1, list_id)

        if position is None:
            target = await self._next_position(new_parent_id, exclude_id=list_id)
        else:
            target = max(position, 0)
            await self._shift_positions(new_parent_id, target, 1, list_id)

        updated = await super().update_by_id(list_id, {"parent_list_id": new_parent_id, "position": target})
        self._coordinator.log_operation(
            context,
            OperationType.UPDATE,
            self.table.name,
            1 + closed,
            {
                "action": "move",
                "id": list_id,
                "from_parent": old_parent_id,
                "to_parent": new_parent_id,
                "position": target,
            },
        )
        return updated  # type: ignore[return-value]

    async def move_to_parent(self, list_id: Any, new_parent_id: Any | None, position: int | None = None) -> Entity:
        """把列表移动到新的父节点下。

        环检测与所有位置调整在同一个事务中完成，任何一步失败整体回滚。

        Args:
            list_id: 被移动的列表
            new_parent_id: 新父节点，None 表示移动为根节点
            position: 目标位置，为空时排在末尾

        Returns:
            移动后的列表

        Raises:
            CircularReferenceError: 新父节点是自身或自身的后代
            EntityNotFoundError: 列表或新父节点不存在
        """
        moved = await self._move(list_id, new_parent_id, position)
        await self._invalidate_lists()
        self._logger.info(f"列表已移动: {list_id} -> {new_parent_id} (position={moved['position']})")
        return moved

    @transactional()
    async def _reorder(self, parent_id: Any | None, ordered_ids: Sequence[Any], *, context: TransactionContext) -> list[Entity]:
        reordered: list[Entity] = []
        for index, list_id in enumerate(ordered_ids):
            rows = await self.handle.update(
                self.table,
                and_(self.columns.primary_key == list_id, self._parent_equals(parent_id)),
                {"position": index},
            )
            if not rows:
                self._logger.warning(f"列表 {list_id} 不在父节点 {parent_id} 下，跳过排序")
                continue
            reordered.append(rows[0])
        self._coordinator.log_operation(
            context,
            OperationType.UPDATE,
            self.table.name,
            len(reordered),
            {"action": "reorder", "parent_id": parent_id},
        )
        return reordered

    async def reorder_within_parent(self, parent_id: Any | None, ordered_ids: Sequence[Any]) -> list[Entity]:
        """按给定顺序重排同级列表，position 等于数组下标。"""
        reordered = await self._reorder(parent_id, ordered_ids)
        if reordered:
            await self._invalidate_lists()
        return reordered

    @transactional()
    async def _archive(self, list_id: Any, *, context: TransactionContext) -> int:
        if not await self.exists(list_id):
            raise EntityNotFoundError(self.table.name, list_id)
        ids = [list_id, *await self.get_all_descendants(list_id)]
        rows = await self.handle.update(
            self.table,
            self.columns.primary_key.in_(ids),
            {"status": ListStatus.ARCHIVED.value},
        )
        self._coordinator.log_operation(
            context,
            OperationType.UPDATE,
            self.table.name,
            len(rows),
            {"action": "archive", "id": list_id},
        )
        return len(rows)

    async def archive_with_children(self, list_id: Any) -> int:
        """归档列表及其所有后代，返回归档数量。"""
        archived = await self._archive(list_id)
        await self._invalidate_lists()
        self._logger.info(f"列表已归档: {list_id} (共 {archived} 个)")
        return archived

    @log_performance(threshold=0.5)
    async def get_hierarchy(
        self,
        max_depth: int | None = None,
        status_filter: Sequence[ListStatus | str] | None = None,
        include_stats: bool = False,
    ) -> list[TreeNode]:
        """构建列表森林。

        在一个只读事务中读取全部匹配的列表，按 id 建立索引后挂接子节点。
        父节点被过滤掉的列表不会出现在结果中。

        Args:
            max_depth: 最大深度，根节点深度为 0，更深节点的 children 置空
            status_filter: 只包含这些状态
            include_stats: 是否为每个节点附加 ``stats``

        Returns:
            根节点列表，每个节点是实体字段加 ``children``
        """

        async def load(
            handle: DatabaseHandle,
            context: TransactionContext,
        ) -> tuple[list[Entity], dict[Any, ListStatistics]]:
            builder = self.query().order_by(*DEFAULT_LIST_ORDER)
            if status_filter:
                builder.filter(
                    FilterCondition(
                        field="status",
                        operator=FilterOperator.IN,
                        values=[ListStatus(value).value for value in status_filter],
                    )
                )
            rows = await handle.fetch_all(builder.build())
            stats = await self._aggregate_child_stats() if include_stats else {}
            self._coordinator.log_operation(context, OperationType.SELECT, self.table.name, len(rows))
            return rows, stats

        rows, stats = (
            await self._coordinator.execute_transaction(load, TransactionOptions(read_only=True))
        ).unwrap()

        pk = self.columns.primary_key_name
        nodes: dict[Any, TreeNode] = {}
        for row in rows:
            node = {**row, "children": []}
            if include_stats:
                node["stats"] = stats.get(row[pk], ListStatistics())
            nodes[row[pk]] = node

        roots: list[TreeNode] = []
        for node in nodes.values():
            parent_id = node["parent_list_id"]
            if parent_id is None:
                roots.append(node)
            elif parent_id in nodes:
                nodes[parent_id]["children"].append(node)

        if max_depth is not None:
            stack = [(root, 0) for root in roots]
            while stack:
                node, depth = stack.pop()
                if depth >= max_depth:
                    node["children"] = []
                    continue
                stack.extend((child, depth + 1) for child in node["children"])

        return roots

    async def _aggregate_child_stats(self, list_ids: Sequence[Any] | None = None) -> dict[Any, ListStatistics]:
        """一次聚合查询统计各列表下的任务。"""
        child = self._child_table
        status = child.c.status
        now = utcnow()

        def count_when(condition: ColumnElement[bool]) -> Any:
            return func.coalesce(func.sum(case((condition, 1), else_=0)), 0)

        statement = (
            select(
                child.c.list_id,
                func.count().label("total"),
                count_when(status == ItemStatus.COMPLETED.value).label("completed"),
                count_when(status == ItemStatus.PENDING.value).label("pending"),
                count_when(status == ItemStatus.IN_PROGRESS.value).label("in_progress"),
                count_when(
                    and_(
                        child.c.due_date.is_not(None),
                        child.c.due_date < now,
                        status != ItemStatus.COMPLETED.value,
                    )
                ).label("overdue"),
                func.avg(child.c.actual_duration).label("average_duration"),
            )
            .group_by(child.c.list_id)
        )
        if list_ids is not None:
            statement = statement.where(child.c.list_id.in_(list(list_ids)))

        result: dict[Any, ListStatistics] = {}
        for row in await self.handle.fetch_all(statement):
            total = int(row["total"])
            completed = int(row["completed"])
            result[row["list_id"]] = ListStatistics(
                total_items=total,
                completed_items=completed,
                pending_items=int(row["pending"]),
                in_progress_items=int(row["in_progress"]),
                completion_rate=round(completed / total * 100, 2) if total else 0.0,
                overdue_items=int(row["overdue"]),
                average_duration=(
                    float(row["average_duration"]) if row["average_duration"] is not None else None
                ),
            )
        return result

    async def get_list_statistics(self, list_id: Any) -> ListStatistics:
        """列表下任务的统计，结果经由缓存。"""

        async def produce() -> ListStatistics:
            stats = await self._aggregate_child_stats([list_id])
            return stats.get(list_id, ListStatistics())

        return await self.execute_with_cache(f"repo:lists:stats:{list_id}", produce, ttl=self._stats_ttl)


def register(registry: RepositoryRegistry, dal: DataAccessLayer) -> None:
    """向注册中心登记列表仓储。"""
    settings = dal.settings

    def factory() -> ListsRepository:
        return ListsRepository(
            dal.handle,
            dal.coordinator,
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
        "lists",
        factory,
        singleton=True,
        lazy=False,
        description="层级列表仓储",
    )


__all__ = [
    "ListStatistics",
    "ListsRepository",
    "TreeNode",
    "register",
]
