"""Services package."""

from fintasks.services.storage import (
    AuditStorageInterface,
    CategoryStoreInterface,
    ConcurrentModificationError,
    DuplicateError,
    ExpenseStoreInterface,
    NotFoundError,
    SqlAuditStorage,
    SqlCategoryStore,
    SqlDatabase,
    SqlExpenseStore,
    SqlTaskRepository,
    StorageConnectionError,
    StorageError,
    TaskRepositoryInterface,
)

__all__ = [
    "AuditStorageInterface",
    "CategoryStoreInterface",
    "ConcurrentModificationError",
    "DuplicateError",
    "ExpenseStoreInterface",
    "NotFoundError",
    "SqlAuditStorage",
    "SqlCategoryStore",
    "SqlDatabase",
    "SqlExpenseStore",
    "SqlTaskRepository",
    "StorageConnectionError",
    "StorageError",
    "TaskRepositoryInterface",
]
