"""Common 层模块。

最基础层，提供：
- 异常基类
- 日志系统
"""

from .exceptions import DALError
from .logging import (
    get_class_logger,
    log_exceptions,
    log_performance,
    logger,
    setup_logging,
)

__all__ = [
    # 异常
    "DALError",
    # 日志
    "get_class_logger",
    "log_exceptions",
    "log_performance",
    "logger",
    "setup_logging",
]
