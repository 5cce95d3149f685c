"""
In-Memory Storage Implementation

Used for tests and for running the scheduler without any external
service. Behaves like a document store: callers always get copies, so
mutating a returned document never changes what is stored.
"""

import copy
from typing import Optional
from uuid import UUID, uuid4

from recurring_ledger.models.audit import AuditEvent
from recurring_ledger.models.recurring import (
    Account,
    LedgerResult,
    LedgerTransaction,
    TransactionDraft,
)
from recurring_ledger.services.storage.interface import (
    AccountLookupInterface,
    AuditStorageInterface,
    LedgerInterface,
    NotFoundError,
    RuleStoreInterface,
)


class InMemoryRuleStore(RuleStoreInterface):
    """Rule documents kept in a dict per owner, in insertion order."""

    def __init__(self):
        self._rules: dict[str, dict[str, dict]] = {}

    def _partition(self, owner_id: str) -> dict[str, dict]:
        return self._rules.setdefault(owner_id, {})

    @staticmethod
    def _with_id(rule_id: str, document: dict) -> dict:
        doc = copy.deepcopy(document)
        doc["id"] = rule_id
        return doc

    async def list_active(self, owner_id: str) -> list[dict]:
        return [
            self._with_id(rule_id, doc)
            for rule_id, doc in self._partition(owner_id).items()
            if doc.get("is_active") is True
        ]

    async def list_all(self, owner_id: str) -> list[dict]:
        docs = [
            self._with_id(rule_id, doc)
            for rule_id, doc in self._partition(owner_id).items()
        ]
        # Newest first; insertion order breaks ties
        ordered = sorted(
            enumerate(docs),
            key=lambda pair: (str(pair[1].get("created_at") or ""), pair[0]),
            reverse=True,
        )
        return [doc for _, doc in ordered]

    async def get(self, owner_id: str, rule_id: str) -> Optional[dict]:
        doc = self._partition(owner_id).get(rule_id)
        return self._with_id(rule_id, doc) if doc is not None else None

    async def add(self, owner_id: str, document: dict) -> str:
        rule_id = uuid4().hex
        doc = copy.deepcopy(document)
        doc.pop("id", None)
        self._partition(owner_id)[rule_id] = doc
        return rule_id

    async def update(self, owner_id: str, rule_id: str, fields: dict) -> None:
        partition = self._partition(owner_id)
        if rule_id not in partition:
            raise NotFoundError(f"Recurring rule not found: {rule_id}")
        changes = copy.deepcopy(fields)
        changes.pop("id", None)
        partition[rule_id].update(changes)

    async def delete(self, owner_id: str, rule_id: str) -> bool:
        return self._partition(owner_id).pop(rule_id, None) is not None


class InMemoryLedger(LedgerInterface, AccountLookupInterface):
    """
    Transactions and account balances in memory.

    A transaction against an unknown account is refused, the way a real
    ledger would refuse it.
    """

    def __init__(self):
        self._accounts: dict[str, dict[str, Account]] = {}
        self._transactions: dict[str, list[LedgerTransaction]] = {}

    def add_account(self, owner_id: str, account: Account) -> Account:
        """Register an account (test and bootstrap helper)."""
        self._accounts.setdefault(owner_id, {})[account.id] = account.model_copy()
        return account

    async def get_account(
        self,
        owner_id: str,
        account_id: str,
    ) -> Optional[Account]:
        account = self._accounts.get(owner_id, {}).get(account_id)
        return account.model_copy() if account else None

    async def create_transaction(
        self,
        owner_id: str,
        draft: TransactionDraft,
    ) -> LedgerResult:
        account = self._accounts.get(owner_id, {}).get(draft.account_id)
        if account is None:
            return LedgerResult(
                success=False,
                error=f"Account not found: {draft.account_id}",
            )

        transaction = LedgerTransaction(
            id=uuid4().hex,
            owner_id=owner_id,
            **draft.model_dump(),
        )
        self._transactions.setdefault(owner_id, []).append(transaction)
        account.balance += draft.signed_amount
        return LedgerResult(success=True, id=transaction.id)

    async def list_transactions(
        self,
        owner_id: str,
        account_id: Optional[str] = None,
        limit: int = 100,
    ) -> list[LedgerTransaction]:
        transactions = [
            t for t in self._transactions.get(owner_id, [])
            if account_id is None or t.account_id == account_id
        ]
        # Newest first; creation order breaks ties on the same date
        ordered = sorted(
            enumerate(transactions),
            key=lambda pair: (pair[1].date, pair[0]),
            reverse=True,
        )
        return [t.model_copy() for _, t in ordered[:limit]]


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only audit log in a list."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._events if e.correlation_id == correlation_id]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        events = [
            e for e in self._events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        return list(reversed(self._events))[:limit]
