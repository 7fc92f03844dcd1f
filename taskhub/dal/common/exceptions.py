"""基础异常定义。

Common 层异常基类，所有 DAL 异常都继承自 DALError。
"""

from __future__ import annotations

from typing import Any

from taskhub.dal.application.errors.codes import ErrorCode


class DALError(Exception):
    """数据访问层异常基类。

    Attributes:
        message: 错误消息
        code: 错误代码
        metadata: 附加信息
        retryable: 事务协调器是否可以重试此异常
    """

    default_code: ErrorCode = ErrorCode.UNKNOWN_ERROR
    retryable: bool = True

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.metadata = metadata or {}

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code.value,
            "message": self.message,
            "type": self.__class__.__name__,
            "metadata": self.metadata,
        }


__all__ = [
    "DALError",
]
