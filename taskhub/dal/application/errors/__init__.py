"""错误代码。"""

from .codes import ErrorCode

__all__ = [
    "ErrorCode",
]
