"""Domain 层异常定义。

未找到单个实体时仓储返回 ``None``/``False``，不抛异常；
以下异常用于无法局部恢复的错误。
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from taskhub.dal.application.errors.codes import ErrorCode
from taskhub.dal.common.exceptions import DALError


class InvalidFieldError(DALError):
    """引用了表上不存在的字段，或过滤条件格式非法。"""

    default_code = ErrorCode.INVALID_FIELD
    retryable = False

    def __init__(self, table: str, field: str, message: str | None = None) -> None:
        super().__init__(
            message or f"表 {table} 不存在字段 '{field}'",
            metadata={"table": table, "field": field},
        )
        self.table = table
        self.field = field


class EntityNotFoundError(DALError):
    """实体不存在导致操作无法继续（如移动、归档）。"""

    default_code = ErrorCode.NOT_FOUND
    retryable = False

    def __init__(self, table: str, entity_id: Any) -> None:
        super().__init__(
            f"{table} 记录不存在: {entity_id}",
            metadata={"table": table, "id": entity_id},
        )
        self.table = table
        self.entity_id = entity_id


class CircularReferenceError(DALError):
    """层级变更会形成环。"""

    default_code = ErrorCode.CIRCULAR_REFERENCE
    retryable = False

    def __init__(self, entity_id: Any, target_id: Any, message: str | None = None) -> None:
        super().__init__(
            message or f"Circular reference: cannot move {entity_id} under {target_id}",
            metadata={"id": entity_id, "target_id": target_id},
        )
        self.entity_id = entity_id
        self.target_id = target_id


class TransactionError(DALError):
    """事务执行失败。"""

    default_code = ErrorCode.TRANSACTION_FAILED


class TransactionTimeoutError(TransactionError):
    """事务超时。"""

    default_code = ErrorCode.TRANSACTION_TIMEOUT

    def __init__(self, timeout: float) -> None:
        self.timeout_ms = int(round(timeout * 1000))
        super().__init__(
            f"Transaction timeout after {self.timeout_ms}ms",
            metadata={"timeout_ms": self.timeout_ms},
        )


class RegistryError(DALError):
    """仓储注册中心错误基类。"""

    default_code = ErrorCode.REGISTRY_ERROR
    retryable = False


class RepositoryNotFoundError(RegistryError):
    """请求了未注册的仓储或服务。"""

    default_code = ErrorCode.REPOSITORY_NOT_FOUND

    def __init__(self, name: str, kind: str = "Repository") -> None:
        super().__init__(f"{kind} '{name}' is not registered", metadata={"name": name})
        self.name = name


class MissingDependencyError(RegistryError):
    """声明的依赖未注册。"""

    default_code = ErrorCode.MISSING_DEPENDENCY

    def __init__(self, name: str, dependency: str) -> None:
        super().__init__(
            f"Repository '{name}' depends on unregistered repository '{dependency}'",
            metadata={"name": name, "dependency": dependency},
        )
        self.name = name
        self.dependency = dependency


class CircularDependencyError(RegistryError):
    """依赖图中存在环。"""

    default_code = ErrorCode.CIRCULAR_DEPENDENCY

    def __init__(self, cycle: Sequence[str]) -> None:
        self.cycle = list(cycle)
        super().__init__(
            f"Circular dependency detected: {' -> '.join(self.cycle)}",
            metadata={"cycle": self.cycle},
        )


class DALNotInitializedError(DALError):
    """数据访问层尚未初始化。"""

    default_code = ErrorCode.NOT_INITIALIZED
    retryable = False

    def __init__(self) -> None:
        super().__init__("Data access layer is not initialized, call initialize_dal() first")


__all__ = [
    "CircularDependencyError",
    "CircularReferenceError",
    "DALNotInitializedError",
    "EntityNotFoundError",
    "InvalidFieldError",
    "MissingDependencyError",
    "RegistryError",
    "RepositoryNotFoundError",
    "TransactionError",
    "TransactionTimeoutError",
]
