"""
Core module for PrintQuotaWeb.

Contains fundamental infrastructure components:
- exceptions: Custom exception hierarchy
- store: Relational store (engine, transactions, settings accessors)
"""

from .exceptions import (
    PrintQuotaWebError,
    StorageUnavailableError,
    UploadError,
    DocumentError,
    LedgerError,
    LimitViolationError,
    DispatchError,
    CompensationError,
)
from .store import Store

__all__ = [
    "PrintQuotaWebError",
    "StorageUnavailableError",
    "UploadError",
    "DocumentError",
    "LedgerError",
    "LimitViolationError",
    "DispatchError",
    "CompensationError",
    "Store",
]
