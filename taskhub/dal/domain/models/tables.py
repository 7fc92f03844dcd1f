"""表结构定义。

使用 SQLAlchemy Core 的 Table 描述列表、任务和任务依赖，
仓储以字典形式读写实体。
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
import uuid

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    PrimaryKeyConstraint,
    String,
    Table,
    Text,
)

metadata = MetaData()


def utcnow() -> datetime:
    """当前 UTC 时间（不带时区，与 SQLite 存储格式一致）。"""
    return datetime.now(UTC).replace(tzinfo=None)


def generate_id() -> str:
    return str(uuid.uuid4())


class ListStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    ARCHIVED = "archived"
    DELETED = "deleted"


class ItemStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    BLOCKED = "blocked"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


lists_table = Table(
    "lists",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("title", String(255), nullable=False),
    Column("description", Text),
    Column("parent_list_id", String(36), ForeignKey("lists.id", ondelete="CASCADE")),
    Column("position", Integer, nullable=False, default=0),
    Column("priority", String(16), nullable=False, default=Priority.MEDIUM.value),
    Column("status", String(16), nullable=False, default=ListStatus.ACTIVE.value),
    Column("created_by", String(255)),
    Column("created_at", DateTime, nullable=False, default=utcnow),
    Column("updated_at", DateTime, nullable=False, default=utcnow, onupdate=utcnow),
    Column("completed_at", DateTime),
    Column("metadata", JSON),
    Index("ix_lists_parent_position", "parent_list_id", "position"),
    Index("ix_lists_status", "status"),
)

items_table = Table(
    "items",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("list_id", String(36), ForeignKey("lists.id", ondelete="CASCADE"), nullable=False),
    Column("title", String(255), nullable=False),
    Column("description", Text),
    Column("position", Integer, nullable=False, default=0),
    Column("priority", String(16), nullable=False, default=Priority.MEDIUM.value),
    Column("status", String(16), nullable=False, default=ItemStatus.PENDING.value),
    Column("due_date", DateTime),
    Column("estimated_duration", Integer),
    Column("actual_duration", Integer),
    Column("tags", JSON),
    Column("created_by", String(255)),
    Column("assigned_to", String(255)),
    Column("created_at", DateTime, nullable=False, default=utcnow),
    Column("updated_at", DateTime, nullable=False, default=utcnow, onupdate=utcnow),
    Column("completed_at", DateTime),
    Column("metadata", JSON),
    Index("ix_items_list_position", "list_id", "position"),
    Index("ix_items_status", "status"),
    Index("ix_items_due_date", "due_date"),
)

item_dependencies_table = Table(
    "item_dependencies",
    metadata,
    Column("item_id", String(36), ForeignKey("items.id", ondelete="CASCADE"), nullable=False),
    Column("depends_on_id", String(36), ForeignKey("items.id", ondelete="CASCADE"), nullable=False),
    Column("created_at", DateTime, nullable=False, default=utcnow),
    PrimaryKeyConstraint("item_id", "depends_on_id"),
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
