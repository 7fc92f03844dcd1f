"""日志管理器 - 统一的日志配置和管理。

提供：
- 统一的日志配置（多日志级别、滚动机制、文件分类）
- 性能监控装饰器
- 异常日志装饰器
- 类专用日志器
"""

from __future__ import annotations

from collections.abc import Callable
from functools import wraps
import os
import time
from typing import Any

from loguru import logger

# 移除默认配置，由setup_logging统一配置
logger.remove()
logger.configure(extra={"trace_id": "-"})


def setup_logging(
    log_level: str = "INFO",
    log_dir: str | None = None,
    enable_file_rotation: bool = True,
    rotation_size: str = "100 MB",
    rotation_time: str = "00:00",
    retention_days: int = 7,
    enable_classify: bool = True,
    enable_console: bool = True,
    enable_file: bool = True,
) -> None:
    """设置日志配置。

    Args:
        log_level: 日志级别（DEBUG/INFO/WARNING/ERROR/CRITICAL）
        log_dir: 日志目录（默认：./log）
        enable_file_rotation: 是否按时间滚动（否则按大小滚动）
        rotation_size: 文件大小阈值（默认：100 MB）
        rotation_time: 每日滚动时间（默认：00:00）
        retention_days: 日志保留天数（默认：7 天）
        enable_classify: 是否按模块分类存储（database/cache）
        enable_console: 是否输出到控制台
        enable_file: 是否写入日志文件
    """
    log_level = log_level.upper()
    log_dir = log_dir or "log"

    logger.remove()

    console_format = (
        "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{name}:{function}:{line}</cyan> | "
        "{extra[trace_id]:.8} - "
        "<level>{message}</level>"
    )

    file_format = (
        "{time:YYYY-MM-DD HH:mm:ss} | "
        "{level: <8} | "
        "{name}:{function}:{line} | "
        "{extra[trace_id]} - "
        "{message}"
    )

    if enable_console:
        logger.add(
            lambda msg: print(msg, end=""),
            format=console_format,
            level=log_level,
            colorize=True,
        )

    if enable_file:
        os.makedirs(log_dir, exist_ok=True)
        rotation = rotation_time if enable_file_rotation else rotation_size
        suffix = "_{time:YYYY-MM-DD}" if enable_file_rotation else ""
        retention = f"{retention_days} days"

        logger.add(
            os.path.join(log_dir, f"dal{suffix}.log"),
            rotation=rotation,
            retention=retention,
            level=log_level,
            format=file_format,
            encoding="utf-8",
            enqueue=True,
        )
        logger.add(
            os.path.join(log_dir, f"error{suffix}.log"),
            rotation=rotation,
            retention=retention,
            level="ERROR",
            format=file_format,
            encoding="utf-8",
            enqueue=True,
        )

        # 分类日志（按模块）
        if enable_classify:
            logger.add(
                os.path.join(log_dir, f"database{suffix}.log"),
                rotation=rotation,
                retention=retention,
                level="DEBUG",
                format=file_format,
                encoding="utf-8",
                filter=lambda record: any(
                    part in record["name"].lower()
                    for part in ("database", "repositor", "transaction")
                ),
                enqueue=True,
            )
            logger.add(
                os.path.join(log_dir, f"cache{suffix}.log"),
                rotation=rotation,
                retention=retention,
                level="DEBUG",
                format=file_format,
                encoding="utf-8",
                filter=lambda record: "cache" in record["name"].lower(),
                enqueue=True,
            )

    logger.info(
        f"日志系统初始化完成 | 级别: {log_level} | "
        f"目录: {log_dir if enable_file else '-'} | "
        f"分类: {enable_classify} | "
        f"滚动: {enable_file_rotation}"
    )


def log_performance(threshold: float = 1.0) -> Callable:
    """性能监控装饰器。

    记录协程执行时间，超过阈值时警告。

    Args:
        threshold: 警告阈值（秒）

    使用示例:
        @log_performance(threshold=0.5)
        async def get_hierarchy(self):
            ...
    """
    def decorator[T](func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            start_time = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
            except Exception as exc:
                duration = time.perf_counter() - start_time
                logger.error(
                    f"执行失败: {func.__qualname__} | "
                    f"耗时: {duration:.3f}s | "
                    f"异常: {type(exc).__name__}: {exc}"
                )
                raise

            duration = time.perf_counter() - start_time
            if duration > threshold:
                logger.warning(
                    f"性能警告: {func.__qualname__} 执行耗时 {duration:.3f}s "
                    f"(阈值: {threshold}s)"
                )
            else:
                logger.debug(f"性能: {func.__qualname__} 执行耗时 {duration:.3f}s")
            return result

        return wrapper
    return decorator


def log_exceptions[T](func: Callable[..., T]) -> Callable[..., T]:
    """异常日志装饰器。

    自动记录协程抛出的异常后继续抛出。
    """
    @wraps(func)
    async def wrapper(*args, **kwargs) -> T:
        try:
            return await func(*args, **kwargs)
        except Exception as exc:
            logger.exception(
                f"异常捕获: {func.__qualname__} | "
                f"异常: {type(exc).__name__}: {exc}"
            )
            raise

    return wrapper


def get_class_logger(obj: object) -> Any:
    """获取类专用的日志器。

    Args:
        obj: 对象实例或类

    Returns:
        绑定了 ``component`` 的日志器实例
    """
    cls = obj if isinstance(obj, type) else obj.__class__
    return logger.bind(component=f"{cls.__module__}.{cls.__name__}")


__all__ = [
    "get_class_logger",
    "log_exceptions",
    "log_performance",
    "logger",
    "setup_logging",
]
