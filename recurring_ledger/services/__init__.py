"""Services package."""

from recurring_ledger.services.storage import (
    AccountLookupInterface,
    AuditStorageInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedger,
    GoogleSheetsRuleStore,
    InMemoryAuditStorage,
    InMemoryLedger,
    InMemoryRuleStore,
    LedgerInterface,
    LedgerWriteError,
    NotFoundError,
    RuleStoreInterface,
    StorageError,
    StoreConnectionError,
)

__all__ = [
    "AccountLookupInterface",
    "AuditStorageInterface",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsLedger",
    "GoogleSheetsRuleStore",
    "InMemoryAuditStorage",
    "InMemoryLedger",
    "InMemoryRuleStore",
    "LedgerInterface",
    "LedgerWriteError",
    "NotFoundError",
    "RuleStoreInterface",
    "StorageError",
    "StoreConnectionError",
]
