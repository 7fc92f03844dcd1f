"""实体仓储。

每个模块提供一个 ``register(registry, dal)`` 函数，由 DataAccessLayer 按固定顺序调用。
"""

from .items import ItemStatistics, ItemsRepository
from .lists import ListStatistics, ListsRepository, TreeNode

__all__ = [
    "ItemStatistics",
    "ItemsRepository",
    "ListStatistics",
    "ListsRepository",
    "TreeNode",
]
