"""
Storage Services Package

Provides abstract interfaces and a SQL implementation for expenses,
categories, financial tasks and the audit log.
"""

from fintasks.services.storage.interface import (
    AuditStorageInterface,
    CategoryStoreInterface,
    ConcurrentModificationError,
    DuplicateError,
    ExpenseStoreInterface,
    NotFoundError,
    StorageConnectionError,
    StorageError,
    TaskRepositoryInterface,
)
from fintasks.services.storage.sql_store import (
    SqlAuditStorage,
    SqlCategoryStore,
    SqlDatabase,
    SqlExpenseStore,
    SqlTaskRepository,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "CategoryStoreInterface",
    "ExpenseStoreInterface",
    "TaskRepositoryInterface",
    # Exceptions
    "ConcurrentModificationError",
    "DuplicateError",
    "NotFoundError",
    "StorageConnectionError",
    "StorageError",
    # SQL implementation
    "SqlAuditStorage",
    "SqlCategoryStore",
    "SqlDatabase",
    "SqlExpenseStore",
    "SqlTaskRepository",
]
