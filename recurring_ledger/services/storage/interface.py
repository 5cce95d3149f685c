"""
Abstract Storage Interfaces

DESIGN DECISION: The scheduler talks to its collaborators only through
these narrow interfaces. This allows us to:
1. Swap Google Sheets for a real document database later
2. Use in-memory storage for testing
3. Keep scheduling logic decoupled from storage implementation

The rule store is document-shaped on purpose: rules go in and come out as
plain dicts, and updates are partial merges. Parsing into RecurrenceRule
happens in the scheduler, so a malformed document is an invalid rule to
skip, not a storage failure.
"""

from abc import ABC, abstractmethod
from typing import Optional
from uuid import UUID

from recurring_ledger.models.audit import AuditEvent
from recurring_ledger.models.recurring import (
    Account,
    LedgerResult,
    LedgerTransaction,
    TransactionDraft,
)


class RuleStoreInterface(ABC):
    """
    Abstract interface for recurring rule documents.

    Every returned document carries its identifier under "id".
    All operations are scoped to one owner.
    """

    @abstractmethod
    async def list_active(self, owner_id: str) -> list[dict]:
        """
        All rules of the owner with is_active == True.

        Order is implementation-defined.

        Raises:
            StorageError: If the store cannot be queried
        """
        pass

    @abstractmethod
    async def list_all(self, owner_id: str) -> list[dict]:
        """All rules of the owner, newest first (by created_at)."""
        pass

    @abstractmethod
    async def get(self, owner_id: str, rule_id: str) -> Optional[dict]:
        """
        Retrieve a rule document by id.

        Returns:
            The document if found, None otherwise
        """
        pass

    @abstractmethod
    async def add(self, owner_id: str, document: dict) -> str:
        """
        Store a new rule document.

        Returns:
            The identifier assigned to it
        """
        pass

    @abstractmethod
    async def update(self, owner_id: str, rule_id: str, fields: dict) -> None:
        """
        Merge *fields* into an existing document.

        Fields not mentioned are left untouched. No version check:
        concurrent writers are last-write-wins.

        Raises:
            NotFoundError: If the rule doesn't exist
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def delete(self, owner_id: str, rule_id: str) -> bool:
        """
        Delete a rule document.

        Returns:
            True if a document was deleted
        """
        pass


class LedgerInterface(ABC):
    """
    Abstract interface for the transaction ledger.

    Creating a transaction also moves the account balance - that is
    the ledger's job, never the scheduler's.
    """

    @abstractmethod
    async def create_transaction(
        self,
        owner_id: str,
        draft: TransactionDraft,
    ) -> LedgerResult:
        """
        Record one transaction and apply it to the account balance.

        Returns:
            LedgerResult with success and the new transaction id,
            or success=False with an error message
        """
        pass

    @abstractmethod
    async def list_transactions(
        self,
        owner_id: str,
        account_id: Optional[str] = None,
        limit: int = 100,
    ) -> list[LedgerTransaction]:
        """List transactions, newest first."""
        pass


class AccountLookupInterface(ABC):
    """Read-only account metadata, used to decorate rules for display."""

    @abstractmethod
    async def get_account(
        self,
        owner_id: str,
        account_id: str,
    ) -> Optional[Account]:
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """All events of one processor run, in chronological order."""
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        """All events for a specific entity, in chronological order."""
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """The most recent audit events (newest first)."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class StoreConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass


class LedgerWriteError(StorageError):
    """The ledger refused or failed to record a transaction."""
    pass
