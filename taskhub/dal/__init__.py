"""TaskHub 数据访问层。

提供：
- 通用仓储（CRUD、过滤/排序组合、批量操作）
- 事务协调器（超时、重试、操作日志）
- 层级列表仓储与任务仓储
- 性能缓存与查询监控
- 仓储注册中心（依赖注入）
"""

from taskhub.dal.application.config import DALSettings
from taskhub.dal.application.lifecycle import (
    DataAccessLayer,
    get_dal,
    get_dal_health_status,
    initialize_dal,
    shutdown_dal,
)
from taskhub.dal.application.registry import RepositoryRegistry, ServiceScope
from taskhub.dal.common.exceptions import DALError
from taskhub.dal.domain.exceptions import (
    CircularDependencyError,
    CircularReferenceError,
    EntityNotFoundError,
    InvalidFieldError,
    MissingDependencyError,
    RegistryError,
    RepositoryNotFoundError,
    TransactionTimeoutError,
)
from taskhub.dal.domain.repository import (
    BaseRepository,
    BulkOperationResult,
    BulkOptions,
    FilterBuilder,
    FilterCondition,
    FilterOperator,
    QueryOptions,
    SortCondition,
)
from taskhub.dal.domain.transaction import (
    TransactionContext,
    TransactionCoordinator,
    TransactionOptions,
    TransactionResult,
)
from taskhub.dal.infrastructure.cache import PerformanceCache, PerformanceMonitor
from taskhub.dal.infrastructure.database import DatabaseHandle, DatabaseManager
from taskhub.dal.repositories import ItemsRepository, ListsRepository

__version__ = "0.1.0"

__all__ = [
    "BaseRepository",
    "BulkOperationResult",
    "BulkOptions",
    "CircularDependencyError",
    "CircularReferenceError",
    "DALError",
    "DALSettings",
    "DataAccessLayer",
    "DatabaseHandle",
    "DatabaseManager",
    "EntityNotFoundError",
    "FilterBuilder",
    "FilterCondition",
    "FilterOperator",
    "InvalidFieldError",
    "ItemsRepository",
    "ListsRepository",
    "MissingDependencyError",
    "PerformanceCache",
    "PerformanceMonitor",
    "QueryOptions",
    "RegistryError",
    "RepositoryNotFoundError",
    "RepositoryRegistry",
    "ServiceScope",
    "SortCondition",
    "TransactionContext",
    "TransactionCoordinator",
    "TransactionOptions",
    "TransactionResult",
    "TransactionTimeoutError",
    "__version__",
    "get_dal",
    "get_dal_health_status",
    "initialize_dal",
    "shutdown_dal",
]
