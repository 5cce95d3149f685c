"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is the first persistent backend because:
1. Users can inspect their rules and ledger directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)

TRADEOFFS:
- Not suitable for high-volume data (fine for one household)
- No transactions: the ledger row and the balance cell are two writes,
  and the rule cursor is a third. The scheduler is at-least-once anyway.
- Limited query capabilities (we filter in Python)

Each collection is one worksheet; every row carries its owner_id.
"""

import json
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Optional
from uuid import UUID, uuid4

import gspread
import structlog
from google.oauth2.service_account import Credentials
from tenacity import (
    retry,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from recurring_ledger.config import get_settings
from recurring_ledger.models.audit import AuditEvent, AuditEventType, AuditSeverity
from recurring_ledger.models.recurring import (
    Account,
    LedgerResult,
    LedgerTransaction,
    TransactionDraft,
    utcnow,
)
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


logger = structlog.get_logger("recurring_ledger.storage")


# Column mappings for the RecurringRules sheet
RULE_COLUMNS = [
    "id",
    "owner_id",
    "amount",
    "kind",
    "description",
    "category",
    "account_id",
    "frequency",
    "start_date",
    "end_date",
    "is_active",
    "pay_on_weekends",
    "last_processed",
    "next_process_date",
    "created_at",
    "updated_at",
]

BOOLEAN_RULE_COLUMNS = {"is_active", "pay_on_weekends"}

TRANSACTION_COLUMNS = [
    "id",
    "owner_id",
    "account_id",
    "date",
    "amount",
    "kind",
    "category",
    "method",
    "description",
    "recurring_rule_id",
    "created_at",
]

ACCOUNT_COLUMNS = [
    "id",
    "owner_id",
    "name",
    "currency",
    "balance",
]

AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "owner_id",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
    "is_user_action",
]

_RETRY = dict(
    retry=retry_if_not_exception_type(NotFoundError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    reraise=True,
)


def _safe_get(row: list, index: int, default: str = "") -> str:
    """Handle short rows gracefully."""
    try:
        return row[index] if row[index] else default
    except IndexError:
        return default


def _cell(value) -> str:
    """Render a document value as a RAW cell."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    return str(value)


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = get_settings().google_sheets

    @retry(**_RETRY)
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise StoreConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise StoreConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise StoreConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def get_worksheet(self, title: str, columns: list[str], rows: int = 1000) -> gspread.Worksheet:
        """Get or create a worksheet with the given header row."""
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet

    def get_rules_sheet(self) -> gspread.Worksheet:
        return self.get_worksheet(self._settings.rules_sheet_name, RULE_COLUMNS)

    def get_transactions_sheet(self) -> gspread.Worksheet:
        return self.get_worksheet(
            self._settings.transactions_sheet_name, TRANSACTION_COLUMNS, rows=5000
        )

    def get_accounts_sheet(self) -> gspread.Worksheet:
        return self.get_worksheet(self._settings.accounts_sheet_name, ACCOUNT_COLUMNS)

    def get_audit_sheet(self) -> gspread.Worksheet:
        return self.get_worksheet(
            self._settings.audit_sheet_name, AUDIT_COLUMNS, rows=5000
        )


class GoogleSheetsRuleStore(RuleStoreInterface):
    """
    Recurring rules as rows, one rule per row.

    Cells are strings; RecurrenceRule parses them back into types.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _document_to_row(self, rule_id: str, owner_id: str, document: dict) -> list:
        values = dict(document, id=rule_id, owner_id=owner_id)
        return [_cell(values.get(column)) for column in RULE_COLUMNS]

    def _row_to_document(self, row: list) -> dict:
        document = {}
        for index, column in enumerate(RULE_COLUMNS):
            value = _safe_get(row, index)
            if column in BOOLEAN_RULE_COLUMNS:
                document[column] = value.strip().upper() == "TRUE"
            else:
                document[column] = value or None
        return document

    def _owned_rows(self, owner_id: str) -> list[tuple[int, list]]:
        """(sheet row number, row) for every rule of the owner."""
        sheet = self._client.get_rules_sheet()
        all_rows = sheet.get_all_values()
        return [
            (idx, row)
            for idx, row in enumerate(all_rows[1:], start=2)  # row 1 is header
            if row and row[0] and _safe_get(row, 1) == owner_id
        ]

    @retry(**_RETRY)
    async def list_active(self, owner_id: str) -> list[dict]:
        try:
            documents = [self._row_to_document(row) for _, row in self._owned_rows(owner_id)]
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to list recurring rules: {e}")
        return [d for d in documents if d["is_active"]]

    async def list_all(self, owner_id: str) -> list[dict]:
        try:
            documents = [self._row_to_document(row) for _, row in self._owned_rows(owner_id)]
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to list recurring rules: {e}")
        documents.sort(key=lambda d: d.get("created_at") or "", reverse=True)
        return documents

    async def get(self, owner_id: str, rule_id: str) -> Optional[dict]:
        try:
            for _, row in self._owned_rows(owner_id):
                if row[0] == rule_id:
                    return self._row_to_document(row)
            return None
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to get recurring rule: {e}")

    @retry(**_RETRY)
    async def add(self, owner_id: str, document: dict) -> str:
        rule_id = uuid4().hex
        try:
            sheet = self._client.get_rules_sheet()
            sheet.append_row(
                self._document_to_row(rule_id, owner_id, document),
                value_input_option="RAW",
            )
            return rule_id
        except Exception as e:
            raise StorageError(f"Failed to save recurring rule: {e}")

    @retry(**_RETRY)
    async def update(self, owner_id: str, rule_id: str, fields: dict) -> None:
        try:
            for idx, row in self._owned_rows(owner_id):
                if row[0] == rule_id:
                    merged = self._row_to_document(row)
                    merged.update(fields)
                    sheet = self._client.get_rules_sheet()
                    sheet.update(
                        range_name=f"A{idx}",
                        values=[self._document_to_row(rule_id, owner_id, merged)],
                        value_input_option="RAW",
                    )
                    return
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update recurring rule: {e}")
        raise NotFoundError(f"Recurring rule not found: {rule_id}")

    async def delete(self, owner_id: str, rule_id: str) -> bool:
        try:
            for idx, row in self._owned_rows(owner_id):
                if row[0] == rule_id:
                    self._client.get_rules_sheet().delete_rows(idx)
                    return True
            return False
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to delete recurring rule: {e}")


class GoogleSheetsLedger(LedgerInterface, AccountLookupInterface):
    """
    Ledger transactions and account balances in two worksheets.

    create_transaction appends the transaction row, then rewrites the
    account's balance cell. The append is the write that counts: it is
    not retried, and once it lands the transaction is reported recorded
    even if the balance cell could not be updated.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _find_account_row(self, owner_id: str, account_id: str) -> tuple[Optional[int], Optional[list]]:
        sheet = self._client.get_accounts_sheet()
        for idx, row in enumerate(sheet.get_all_values()[1:], start=2):
            if row and row[0] == account_id and _safe_get(row, 1) == owner_id:
                return idx, row
        return None, None

    def _row_to_account(self, row: list) -> Account:
        try:
            balance = Decimal(_safe_get(row, 4, "0"))
        except InvalidOperation:
            balance = Decimal("0")
        return Account(
            id=_safe_get(row, 0),
            name=_safe_get(row, 2),
            currency=_safe_get(row, 3, "USD"),
            balance=balance,
        )

    def _transaction_to_row(self, transaction: LedgerTransaction) -> list:
        return [
            transaction.id,
            transaction.owner_id,
            transaction.account_id,
            transaction.date.isoformat(),
            str(transaction.amount),
            transaction.kind.value,
            transaction.category.value,
            transaction.method.value,
            transaction.description,
            transaction.recurring_rule_id or "",
            transaction.created_at.isoformat(),
        ]

    def _row_to_transaction(self, row: list) -> LedgerTransaction:
        return LedgerTransaction(
            id=_safe_get(row, 0),
            owner_id=_safe_get(row, 1),
            account_id=_safe_get(row, 2),
            date=_safe_get(row, 3),
            amount=Decimal(_safe_get(row, 4)),
            kind=_safe_get(row, 5),
            category=_safe_get(row, 6),
            method=_safe_get(row, 7),
            description=_safe_get(row, 8),
            recurring_rule_id=_safe_get(row, 9) or None,
            created_at=datetime.fromisoformat(_safe_get(row, 10)),
        )

    async def get_account(
        self,
        owner_id: str,
        account_id: str,
    ) -> Optional[Account]:
        try:
            _, row = self._find_account_row(owner_id, account_id)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to get account: {e}")
        return self._row_to_account(row) if row else None

    def _append_transaction(self, transaction: LedgerTransaction) -> None:
        # No retry: a timed-out append may still have landed
        try:
            sheet = self._client.get_transactions_sheet()
            sheet.append_row(self._transaction_to_row(transaction), value_input_option="RAW")
        except Exception as e:
            raise LedgerWriteError(f"Failed to record transaction: {e}")

    def _apply_to_balance(self, row_index: int, account: Account, draft: TransactionDraft) -> None:
        new_balance = account.balance + draft.signed_amount
        try:
            self._client.get_accounts_sheet().update_cell(
                row_index, ACCOUNT_COLUMNS.index("balance") + 1, str(new_balance)
            )
        except Exception as e:
            logger.error(
                "balance_update_failed",
                account_id=account.id,
                expected_balance=str(new_balance),
                error=str(e),
            )

    async def create_transaction(
        self,
        owner_id: str,
        draft: TransactionDraft,
    ) -> LedgerResult:
        try:
            idx, row = self._find_account_row(owner_id, draft.account_id)
            if row is None:
                return LedgerResult(
                    success=False,
                    error=f"Account not found: {draft.account_id}",
                )

            transaction = LedgerTransaction(
                id=uuid4().hex,
                owner_id=owner_id,
                created_at=utcnow(),
                **draft.model_dump(),
            )
            self._append_transaction(transaction)
        except LedgerWriteError as e:
            return LedgerResult(success=False, error=str(e))
        except Exception as e:
            return LedgerResult(success=False, error=f"Failed to record transaction: {e}")

        # The row is in the sheet from here on
        self._apply_to_balance(idx, self._row_to_account(row), draft)
        return LedgerResult(success=True, id=transaction.id)

    async def list_transactions(
        self,
        owner_id: str,
        account_id: Optional[str] = None,
        limit: int = 100,
    ) -> list[LedgerTransaction]:
        try:
            sheet = self._client.get_transactions_sheet()
            all_rows = sheet.get_all_values()[1:]  # Skip header

            transactions = []
            for row in all_rows:
                if not row or not row[0] or _safe_get(row, 1) != owner_id:
                    continue
                if account_id and _safe_get(row, 2) != account_id:
                    continue
                try:
                    transactions.append(self._row_to_transaction(row))
                except Exception:
                    continue  # Skip malformed rows

            transactions.sort(key=lambda t: t.date, reverse=True)
            return transactions[:limit]
        except Exception as e:
            raise StorageError(f"Failed to list transactions: {e}")


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        return AuditEvent(
            event_id=UUID(_safe_get(row, 0)),
            timestamp=datetime.fromisoformat(_safe_get(row, 1)),
            event_type=AuditEventType(_safe_get(row, 2)),
            severity=AuditSeverity(_safe_get(row, 3)),
            owner_id=_safe_get(row, 4) or None,
            entity_type=_safe_get(row, 5) or None,
            entity_id=_safe_get(row, 6) or None,
            correlation_id=UUID(_safe_get(row, 7)) if _safe_get(row, 7) else None,
            description=_safe_get(row, 8),
            details=json.loads(_safe_get(row, 9)) if _safe_get(row, 9) else {},
            error_message=_safe_get(row, 10) or None,
            is_user_action=_safe_get(row, 11).lower() == "true",
        )

    def _all_events(self) -> list[AuditEvent]:
        sheet = self._client.get_audit_sheet()
        events = []
        for row in sheet.get_all_values()[1:]:
            if row and row[0]:
                try:
                    events.append(self._row_to_event(row))
                except Exception:
                    continue
        return events

    @retry(**_RETRY)
    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        sheet = self._client.get_audit_sheet()
        sheet.append_row(event.to_sheets_row(), value_input_option="RAW")
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        try:
            events = [e for e in self._all_events() if e.correlation_id == correlation_id]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        try:
            events = [
                e for e in self._all_events()
                if e.entity_type == entity_type and e.entity_id == entity_id
            ]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        try:
            events = self._all_events()
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
