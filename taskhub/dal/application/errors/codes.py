"""错误代码定义。

提供统一的错误代码枚举。
"""

from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    """错误代码枚举。"""

    # 通用错误 (1xxx)
    UNKNOWN_ERROR = "1000"
    VALIDATION_ERROR = "1001"
    NOT_FOUND = "1002"
    INVALID_FIELD = "1003"

    # 数据库错误 (2xxx)
    DATABASE_ERROR = "2000"
    TRANSACTION_FAILED = "2001"
    TRANSACTION_TIMEOUT = "2002"

    # 层级错误 (3xxx)
    CIRCULAR_REFERENCE = "3000"

    # 注册中心错误 (4xxx)
    REGISTRY_ERROR = "4000"
    REPOSITORY_NOT_FOUND = "4001"
    MISSING_DEPENDENCY = "4002"
    CIRCULAR_DEPENDENCY = "4003"
    NOT_INITIALIZED = "4004"


__all__ = [
    "ErrorCode",
]
