"""仓储查询与批量操作的数据模型。"""

from __future__ import annotations

from enum import Enum
import math
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field, NonNegativeInt, computed_field, model_validator

T = TypeVar("T")

Entity = dict[str, Any]


class FilterOperator(str, Enum):
    """过滤操作符。"""

    EQ = "eq"
    NE = "ne"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    LIKE = "like"
    ILIKE = "ilike"
    IN = "in"
    NOT_IN = "notIn"
    IS_NULL = "isNull"
    IS_NOT_NULL = "isNotNull"
    BETWEEN = "between"


# 使用 values 而非 value 的操作符
MULTI_VALUE_OPERATORS = frozenset({FilterOperator.IN, FilterOperator.NOT_IN, FilterOperator.BETWEEN})


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


class FilterCondition(BaseModel):
    """单个过滤条件。

    ``in``/``notIn``/``between`` 使用 ``values``，其余操作符使用 ``value``。
    """

    model_config = ConfigDict(frozen=True)

    field: str
    operator: FilterOperator = FilterOperator.EQ
    value: Any = None
    values: list[Any] | None = None

    @model_validator(mode="after")
    def _check_value_shape(self) -> FilterCondition:
        if self.operator in MULTI_VALUE_OPERATORS:
            if self.value is not None:
                raise ValueError(f"操作符 {self.operator.value} 使用 values，而非 value")
            if not self.values:
                raise ValueError(f"操作符 {self.operator.value} 需要非空的 values")
            if self.operator == FilterOperator.BETWEEN and len(self.values) != 2:
                raise ValueError("between 需要恰好两个 values")
        elif self.values is not None:
            raise ValueError(f"操作符 {self.operator.value} 使用 value，而非 values")
        return self


class SortCondition(BaseModel):
    """排序条件，列表顺序即排序优先级。"""

    model_config = ConfigDict(frozen=True)

    field: str
    direction: SortDirection = SortDirection.ASC


class QueryOptions(BaseModel):
    """查询选项。limit/offset 为空表示不分页。"""

    filters: list[FilterCondition] = Field(default_factory=list)
    sorts: list[SortCondition] = Field(default_factory=list)
    limit: NonNegativeInt | None = None
    offset: NonNegativeInt | None = None
    group_by: list[str] = Field(default_factory=list)
    having: list[FilterCondition] = Field(default_factory=list)


class BulkOptions(BaseModel):
    """批量操作选项。"""

    batch_size: int = Field(default=50, gt=0)
    continue_on_error: bool = True


class BulkUpdateItem(BaseModel):
    """批量更新条目。"""

    id: str | int
    data: dict[str, Any]


class BulkError(BaseModel):
    """批量操作中单个条目的错误。"""

    index: int | None = None
    id: str | int | None = None
    error: str


class BulkSummary(BaseModel):
    total: int
    successful: int
    failed: int


class BulkOperationResult(BaseModel, Generic[T]):
    """批量操作结果。

    ``summary`` 与 ``success`` 由 ``results``/``errors`` 推导，始终保持一致。
    """

    results: list[T] = Field(default_factory=list)
    errors: list[BulkError] = Field(default_factory=list)

    @computed_field
    @property
    def success(self) -> bool:
        return not self.errors

    @computed_field
    @property
    def summary(self) -> BulkSummary:
        return BulkSummary(
            total=len(self.results) + len(self.errors),
            successful=len(self.results),
            failed=len(self.errors),
        )


class PaginationResult(BaseModel, Generic[T]):
    """分页结果。"""

    items: list[T]
    total: int
    page: int
    size: int

    @computed_field
    @property
    def total_pages(self) -> int:
        if self.size <= 0:
            return 0
        return math.ceil(self.total / self.size)

    @computed_field
    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages

    @computed_field
    @property
    def has_prev(self) -> bool:
        return self.page > 1


__all__ = [
    "BulkError",
    "BulkOperationResult",
    "BulkOptions",
    "BulkSummary",
    "BulkUpdateItem",
    "Entity",
    "FilterCondition",
    "FilterOperator",
    "MULTI_VALUE_OPERATORS",
    "PaginationResult",
    "QueryOptions",
    "SortCondition",
    "SortDirection",
]
