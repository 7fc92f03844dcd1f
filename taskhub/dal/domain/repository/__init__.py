"""通用仓储：列注册表、查询构建器、批量操作引擎。"""

from .columns import ColumnRegistry
from .impl import RECORD_NOT_FOUND, BaseRepository
from .query_builder import FilterBuilder, QueryBuilder
from .types import (
    BulkError,
    BulkOperationResult,
    BulkOptions,
    BulkSummary,
    BulkUpdateItem,
    Entity,
    FilterCondition,
    FilterOperator,
    PaginationResult,
    QueryOptions,
    SortCondition,
    SortDirection,
)

__all__ = [
    "RECORD_NOT_FOUND",
    "BaseRepository",
    "BulkError",
    "BulkOperationResult",
    "BulkOptions",
    "BulkSummary",
    "BulkUpdateItem",
    "ColumnRegistry",
    "Entity",
    "FilterBuilder",
    "FilterCondition",
    "FilterOperator",
    "PaginationResult",
    "QueryBuilder",
    "QueryOptions",
    "SortCondition",
    "SortDirection",
]
