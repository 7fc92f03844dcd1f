"""查询构建器。

把 FilterCondition/SortCondition/QueryOptions 渲染为 SQLAlchemy 表达式，
所有字段都经过 ColumnRegistry 校验。

注意：此模块定义在 domain 层，因为查询构建与特定数据库实现无关。
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Any

from sqlalchemy import Select, and_, or_, select, true
from sqlalchemy.sql.expression import ColumnElement

from taskhub.dal.domain.exceptions import InvalidFieldError
from taskhub.dal.domain.repository.columns import ColumnRegistry
from taskhub.dal.domain.repository.types import (
    FilterCondition,
    FilterOperator,
    QueryOptions,
    SortCondition,
    SortDirection,
)

# 操作符处理函数字典（函数式编程）
_OPERATOR_HANDLERS: dict[FilterOperator, Callable[[Any, FilterCondition], Any]] = {
    FilterOperator.EQ: lambda field, cond: field == cond.value,
    FilterOperator.NE: lambda field, cond: field != cond.value,
    FilterOperator.GT: lambda field, cond: field > cond.value,
    FilterOperator.GTE: lambda field, cond: field >= cond.value,
    FilterOperator.LT: lambda field, cond: field < cond.value,
    FilterOperator.LTE: lambda field, cond: field <= cond.value,
    FilterOperator.LIKE: lambda field, cond: field.like(cond.value),
    FilterOperator.ILIKE: lambda field, cond: field.ilike(cond.value),
    FilterOperator.IN: lambda field, cond: field.in_(cond.values),
    FilterOperator.NOT_IN: lambda field, cond: field.not_in(cond.values),
    FilterOperator.IS_NULL: lambda field, cond: field.is_(None),
    FilterOperator.IS_NOT_NULL: lambda field, cond: field.is_not(None),
    FilterOperator.BETWEEN: lambda field, cond: field.between(cond.values[0], cond.values[1]),
}


def build_condition(columns: ColumnRegistry, condition: FilterCondition) -> ColumnElement[bool]:
    """构建单个过滤条件表达式。

    Args:
        columns: 列注册表
        condition: 过滤条件

    Returns:
        SQLAlchemy 条件表达式

    Raises:
        InvalidFieldError: 字段不存在，或 eq/ne 以外的比较操作符传入了空值
    """
    column = columns.get(condition.field)
    if condition.value is None and condition.operator in (
        FilterOperator.GT,
        FilterOperator.GTE,
        FilterOperator.LT,
        FilterOperator.LTE,
        FilterOperator.LIKE,
        FilterOperator.ILIKE,
    ):
        raise InvalidFieldError(
            columns.table_name,
            condition.field,
            f"操作符 {condition.operator.value} 需要非空的 value（字段 '{condition.field}'）",
        )
    if condition.value is None and condition.operator == FilterOperator.EQ:
        return column.is_(None)
    if condition.value is None and condition.operator == FilterOperator.NE:
        return column.is_not(None)
    return _OPERATOR_HANDLERS[condition.operator](column, condition)


def build_conditions(
    columns: ColumnRegistry,
    conditions: Iterable[FilterCondition],
) -> ColumnElement[bool] | None:
    """把多个条件以 AND 组合；没有条件时返回 None。"""
    clauses = [build_condition(columns, condition) for condition in conditions]
    if not clauses:
        return None
    if len(clauses) == 1:
        return clauses[0]
    return and_(*clauses)


def build_order_by(columns: ColumnRegistry, sorts: Iterable[SortCondition]) -> list[Any]:
    order_by = []
    for sort in sorts:
        column = columns.get(sort.field)
        order_by.append(column.desc() if sort.direction == SortDirection.DESC else column.asc())
    return order_by


class FilterBuilder:
    """过滤条件构建器。

    同一个构建器内的条件以 AND 组合；两个独立构建的构建器可以通过 ``or_`` 在顶层以 OR 组合。

    使用示例:
        title = FilterBuilder(columns).where("title", FilterOperator.ILIKE, "%plan%")
        desc = FilterBuilder(columns).where("description", FilterOperator.ILIKE, "%plan%")
        await repo.find_all(where=title.or_(desc))
    """

    def __init__(self, columns: ColumnRegistry) -> None:
        self._columns = columns
        self._conditions: list[FilterCondition] = []
        self._alternatives: list[FilterBuilder] = []

    @property
    def columns(self) -> ColumnRegistry:
        return self._columns

    def add(self, *conditions: FilterCondition) -> FilterBuilder:
        """追加条件（AND），字段立即校验。"""
        for condition in conditions:
            self._columns.get(condition.field)
            self._conditions.append(condition)
        return self

    def where(
        self,
        field: str,
        operator: FilterOperator | str = FilterOperator.EQ,
        value: Any = None,
        values: list[Any] | None = None,
    ) -> FilterBuilder:
        return self.add(
            FilterCondition(field=field, operator=FilterOperator(operator), value=value, values=values)
        )

    def or_(self, other: FilterBuilder) -> FilterBuilder:
        """返回新的构建器，结果为 ``self OR other``。"""
        if other.columns.table is not self._columns.table:
            raise InvalidFieldError(
                self._columns.table_name,
                "*",
                f"不能组合不同表的过滤条件: {self._columns.table_name} / {other.columns.table_name}",
            )
        combined = FilterBuilder(self._columns)
        combined._alternatives = [self, other]
        return combined

    def is_empty(self) -> bool:
        return not self._conditions and not self._alternatives

    def build(self) -> ColumnElement[bool] | None:
        """构建最终表达式；空构建器返回 None。"""
        clauses = []
        if self._alternatives:
            branches = [branch.build() for branch in self._alternatives]
            # 空分支等价于"全部匹配"
            branches = [true() if branch is None else branch for branch in branches]
            clauses.append(or_(*branches))
        own = build_conditions(self._columns, self._conditions)
        if own is not None:
            clauses.append(own)
        if not clauses:
            return None
        return clauses[0] if len(clauses) == 1 else and_(*clauses)


class QueryBuilder:
    """查询构建器。

    提供链式查询构建，最终渲染顺序固定为：过滤、排序、分组、having、limit、offset。
    """

    def __init__(self, columns: ColumnRegistry) -> None:
        self._columns = columns
        self._filters: list[ColumnElement[bool]] = []
        self._order_by: list[Any] = []
        self._group_by: list[Any] = []
        self._having: list[ColumnElement[bool]] = []
        self._limit: int | None = None
        self._offset: int | None = None

    @classmethod
    def from_options(
        cls,
        columns: ColumnRegistry,
        options: QueryOptions | None = None,
        where: FilterBuilder | None = None,
    ) -> QueryBuilder:
        """根据 QueryOptions 创建构建器。"""
        builder = cls(columns)
        if where is not None:
            builder.filter_by(where)
        if options is None:
            return builder
        builder.filter(*options.filters)
        builder.order_by(*options.sorts)
        builder.group_by(*options.group_by)
        builder.having(*options.having)
        builder.limit(options.limit)
        builder.offset(options.offset)
        return builder

    def filter(self, *conditions: FilterCondition) -> QueryBuilder:
        """添加 AND 过滤条件。"""
        for condition in conditions:
            self._filters.append(build_condition(self._columns, condition))
        return self

    def filter_by(self, *builders: FilterBuilder | ColumnElement[bool]) -> QueryBuilder:
        """添加已构建的过滤表达式（如 OR 组合）。"""
        for builder in builders:
            expression = builder.build() if isinstance(builder, FilterBuilder) else builder
            if expression is not None:
                self._filters.append(expression)
        return self

    def order_by(self, *sorts: SortCondition) -> QueryBuilder:
        self._order_by.extend(build_order_by(self._columns, sorts))
        return self

    def group_by(self, *fields: str) -> QueryBuilder:
        self._group_by.extend(self._columns.get(field) for field in fields)
        return self

    def having(self, *conditions: FilterCondition) -> QueryBuilder:
        for condition in conditions:
            self._having.append(build_condition(self._columns, condition))
        return self

    def limit(self, limit: int | None) -> QueryBuilder:
        self._limit = limit
        return self

    def offset(self, offset: int | None) -> QueryBuilder:
        self._offset = offset
        return self

    def where_clause(self) -> ColumnElement[bool] | None:
        """仅返回过滤部分（供 count/update/delete 复用）。"""
        if not self._filters:
            return None
        return self._filters[0] if len(self._filters) == 1 else and_(*self._filters)

    def build(self) -> Select:
        """构建最终查询。"""
        query = select(self._columns.table)
        where = self.where_clause()
        if where is not None:
            query = query.where(where)
        if self._order_by:
            query = query.order_by(*self._order_by)
        if self._group_by:
            query = query.group_by(*self._group_by)
        if self._having:
            query = query.having(and_(*self._having))
        if self._limit is not None:
            query = query.limit(self._limit)
        if self._offset is not None:
            query = query.offset(self._offset)
        return query


__all__ = [
    "FilterBuilder",
    "QueryBuilder",
    "build_condition",
    "build_conditions",
    "build_order_by",
]
