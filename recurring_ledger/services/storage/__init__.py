"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
In-memory storage backs tests and local runs; Google Sheets is the
persistent backend. Designed to be swappable.
"""

from recurring_ledger.services.storage.interface import (
    AccountLookupInterface,
    AuditStorageInterface,
    LedgerInterface,
    LedgerWriteError,
    NotFoundError,
    RuleStoreInterface,
    StorageError,
    StoreConnectionError,
)
from recurring_ledger.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryLedger,
    InMemoryRuleStore,
)
from recurring_ledger.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedger,
    GoogleSheetsRuleStore,
)

__all__ = [
    # Interfaces
    "AccountLookupInterface",
    "AuditStorageInterface",
    "LedgerInterface",
    "RuleStoreInterface",
    # Exceptions
    "LedgerWriteError",
    "NotFoundError",
    "StorageError",
    "StoreConnectionError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryLedger",
    "InMemoryRuleStore",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsLedger",
    "GoogleSheetsRuleStore",
]
