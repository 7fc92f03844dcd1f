"""表结构与枚举。"""

from .tables import (
    ItemStatus,
    ListStatus,
    Priority,
    generate_id,
    item_dependencies_table,
    items_table,
    lists_table,
    metadata,
    utcnow,
)

__all__ = [
    "ItemStatus",
    "ListStatus",
    "Priority",
    "generate_id",
    "item_dependencies_table",
    "items_table",
    "lists_table",
    "metadata",
    "utcnow",
]
