"""数据库模块。

提供数据库句柄与引擎生命周期管理。
"""

from .handle import DatabaseHandle, Entity
from .manager import DatabaseManager

__all__ = [
    "DatabaseHandle",
    "DatabaseManager",
    "Entity",
]
