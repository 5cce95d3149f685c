"""
Tests for the due-transaction processor and materializer.

Integration tests over in-memory storage. Async code is driven with
asyncio.run so no event-loop plugin is needed.
"""

import asyncio
import pytest
from datetime import date
from decimal import Decimal

from recurring_ledger.audit import AuditLogger
from recurring_ledger.models.audit import AuditEventType
from recurring_ledger.models.recurring import (
    Account,
    Frequency,
    LedgerCategory,
    LedgerResult,
    PaymentMethod,
    RecurrenceRule,
    StopReason,
    TransactionKind,
)
from recurring_ledger.scheduling import DueTransactionProcessor, Materializer
from recurring_ledger.services.storage import (
    InMemoryAuditStorage,
    InMemoryLedger,
    InMemoryRuleStore,
    StoreConnectionError,
)


OWNER = "user-1"


def rule_document(**overrides) -> dict:
    rule = RecurrenceRule(**{
        "owner_id": OWNER,
        "amount": Decimal("1500"),
        "kind": TransactionKind.INCOME,
        "description": "Salary",
        "category": "Salary",
        "account_id": "acc-1",
        "frequency": Frequency.MONTHLY,
        "start_date": date(2024, 1, 15),
        **overrides,
    })
    document = rule.to_document()
    if rule.next_process_date is None and "next_process_date" not in overrides:
        document["next_process_date"] = rule.start_date.isoformat()
    return document


def make_env():
    store = InMemoryRuleStore()
    ledger = InMemoryLedger()
    ledger.add_account(OWNER, Account(id="acc-1", name="Checking", balance=Decimal("100")))
    audit_storage = InMemoryAuditStorage()
    processor = DueTransactionProcessor(
        rule_store=store,
        ledger=ledger,
        audit_logger=AuditLogger(audit_storage),
    )
    return store, ledger, audit_storage, processor


def add_rule(store: InMemoryRuleStore, **overrides) -> str:
    return asyncio.run(store.add(OWNER, rule_document(**overrides)))


def get_rule(store: InMemoryRuleStore, rule_id: str) -> dict:
    return asyncio.run(store.get(OWNER, rule_id))


def transactions(ledger: InMemoryLedger) -> list:
    return asyncio.run(ledger.list_transactions(OWNER))


class FailingLedger(InMemoryLedger):
    """Refuses the Nth write (1-based) and every write listed in fail_on."""

    def __init__(self, fail_on: set[int]):
        super().__init__()
        self.fail_on = fail_on
        self.calls = 0

    async def create_transaction(self, owner_id, draft):
        self.calls += 1
        if self.calls in self.fail_on:
            return LedgerResult(success=False, error="Ledger unavailable")
        return await super().create_transaction(owner_id, draft)


class RaisingLedger(InMemoryLedger):
    async def create_transaction(self, owner_id, draft):
        raise RuntimeError("connection reset")


class YieldingLedger(InMemoryLedger):
    """Gives up control on every write, like a real network ledger."""

    async def create_transaction(self, owner_id, draft):
        await asyncio.sleep(0)
        return await super().create_transaction(owner_id, draft)


class TestCatchUp:
    """Tests for materializing due occurrences."""

    def test_monthly_backfill_scenario(self):
        """Test a 2024-01-15 monthly rule first processed on 2024-04-20."""
        store, ledger, _, processor = make_env()
        rule_id = add_rule(store)

        created = asyncio.run(processor.process_due_occurrences(OWNER, date(2024, 4, 20)))

        assert created == 4
        stored = get_rule(store, rule_id)
        assert stored["last_processed"] == "2024-04-15"
        assert stored["next_process_date"] == "2024-05-15"
        assert stored["is_active"] is True
        assert sorted(t.date for t in transactions(ledger)) == [
            date(2024, 1, 15),
            date(2024, 2, 15),
            date(2024, 3, 15),
            date(2024, 4, 15),
        ]

    def test_second_pass_same_day_creates_nothing(self):
        store, ledger, _, processor = make_env()
        rule_id = add_rule(store)
        asyncio.run(processor.process_due_occurrences(OWNER, date(2024, 4, 20)))
        before = get_rule(store, rule_id)

        created = asyncio.run(processor.process_due_occurrences(OWNER, date(2024, 4, 20)))

        assert created == 0
        assert len(transactions(ledger)) == 4
        # Idle pass writes nothing
        assert get_rule(store, rule_id)["updated_at"] == before["updated_at"]

    def test_occurrence_exactly_today_is_created(self):
        store, ledger, _, processor = make_env()
        rule_id = add_rule(store, start_date=date(2024, 3, 10))

        created = asyncio.run(processor.process_due_occurrences(OWNER, date(2024, 3, 10)))

        assert created == 1
        assert get_rule(store, rule_id)["next_process_date"] == "2024-04-10"

    def test_day_before_start_creates_nothing(self):
        store, ledger, _, processor = make_env()
        add_rule(store, start_date=date(2024, 3, 10))
        assert asyncio.run(processor.process_due_occurrences(OWNER, date(2024, 3, 9))) == 0

    def test_saturday_occurrence_moves_to_friday(self):
        """Test that the ledger date shifts but the cadence does not."""
        store, ledger, _, processor = make_env()
        rule_id = add_rule(store, start_date=date(2024, 6, 15), pay_on_weekends=False)

        asyncio.run(processor.process_due_occurrences(OWNER, date(2024, 6, 20)))

        [transaction] = transactions(ledger)
        assert transaction.date == date(2024, 6, 14)
        stored = get_rule(store, rule_id)
        assert stored["last_processed"] == "2024-06-15"
        assert stored["next_process_date"] == "2024-07-15"

    def test_month_end_anchor_survives_catch_up(self):
        store, ledger, _, processor = make_env()
        rule_id = add_rule(store, start_date=date(2024, 1, 31))

        asyncio.run(processor.process_due_occurrences(OWNER, date(2024, 4, 30)))

        assert sorted(t.date for t in transactions(ledger)) == [
            date(2024, 1, 31),
            date(2024, 2, 29),
            date(2024, 3, 31),
            date(2024, 4, 30),
        ]
        assert get_rule(store, rule_id)["next_process_date"] == "2024-05-31"

    def test_rule_without_cursor_resumes_after_last_processed(self):
        store, ledger, _, processor = make_env()
        add_rule(store, last_processed=date(2024, 2, 15), next_process_date=None)

        created = asyncio.run(processor.process_due_occurrences(OWNER, date(2024, 4, 20)))

        assert created == 2


class TestLedgerPayload:
    """Tests for what each occurrence sends to the ledger."""

    def test_income_is_direct_deposit_and_raises_balance(self):
        store, ledger, _, processor = make_env()
        rule_id = add_rule(store)

        asyncio.run(processor.process_due_occurrences(OWNER, date(2024, 4, 20)))

        transaction = transactions(ledger)[0]
        assert transaction.method == PaymentMethod.DIRECT_DEPOSIT
        assert transaction.category == LedgerCategory.SALARY
        assert transaction.recurring_rule_id == rule_id
        account = asyncio.run(ledger.get_account(OWNER, "acc-1"))
        assert account.balance == Decimal("6100")

    def test_expense_is_bank_transfer_and_lowers_balance(self):
        store, ledger, _, processor = make_env()
        add_rule(store, kind=TransactionKind.EXPENSE, amount=Decimal("40"), category="Utilities")

        asyncio.run(processor.process_due_occurrences(OWNER, date(2024, 1, 20)))

        transaction = transactions(ledger)[0]
        assert transaction.method == PaymentMethod.BANK_TRANSFER
        account = asyncio.run(ledger.get_account(OWNER, "acc-1"))
        assert account.balance == Decimal("60")

    def test_unknown_category_falls_back_to_other(self):
        store, ledger, _, processor = make_env()
        add_rule(store, category="Rent")

        asyncio.run(processor.process_due_occurrences(OWNER, date(2024, 1, 20)))

        assert transactions(ledger)[0].category == LedgerCategory.OTHER

    def test_empty_description_is_generated(self):
        store, ledger, _, processor = make_env()
        add_rule(store, kind=TransactionKind.EXPENSE, description="")

        asyncio.run(processor.process_due_occurrences(OWNER, date(2024, 1, 20)))

        assert transactions(ledger)[0].description == "Recurring expense"


class TestEndDate:
    """Tests for exhausting a rule."""

    def test_rule_deactivates_after_end_date(self):
        store, ledger, _, processor = make_env()
        rule_id = add_rule(store, end_date=date(2024, 3, 20))

        report = asyncio.run(processor.run(OWNER, date(2024, 6, 1)))

        assert report.transactions_created == 3
        assert report.rules_deactivated == 1
        stored = get_rule(store, rule_id)
        assert stored["is_active"] is False
        assert stored["next_process_date"] is None
        assert stored["last_processed"] == "2024-03-15"

    def test_exhausted_rule_is_not_processed_again(self):
        store, ledger, _, processor = make_env()
        add_rule(store, end_date=date(2024, 3, 20))
        asyncio.run(processor.run(OWNER, date(2024, 6, 1)))

        report = asyncio.run(processor.run(OWNER, date(2024, 9, 1)))

        assert report.rules_examined == 0
        assert len(transactions(ledger)) == 3

    def test_start_after_end_deactivates_without_transactions(self):
        store, ledger, _, processor = make_env()
        rule_id = add_rule(store, start_date=date(2024, 5, 1), end_date=date(2024, 4, 1))

        created = asyncio.run(processor.process_due_occurrences(OWNER, date(2024, 6, 1)))

        assert created == 0
        assert get_rule(store, rule_id)["is_active"] is False

    def test_cursor_past_end_deactivates_before_today_passes_end(self):
        store, ledger, _, processor = make_env()
        rule_id = add_rule(store, end_date=date(2024, 1, 20))

        asyncio.run(processor.run(OWNER, date(2024, 1, 16)))

        stored = get_rule(store, rule_id)
        assert stored["is_active"] is False
        assert stored["next_process_date"] is None


class TestLedgerFailure:
    """Tests for stopping on a failed ledger write."""

    def make_failing_env(self, fail_on: set[int]):
        store = InMemoryRuleStore()
        ledger = FailingLedger(fail_on)
        ledger.add_account(OWNER, Account(id="acc-1"))
        processor = DueTransactionProcessor(rule_store=store, ledger=ledger)
        return store, ledger, processor

    def test_failure_on_third_of_four_keeps_first_two(self):
        store, ledger, processor = self.make_failing_env({3})
        rule_id = add_rule(store)

        report = asyncio.run(processor.run(OWNER, date(2024, 4, 20)))

        assert report.transactions_created == 2
        assert report.outcomes[0].stop_reason == StopReason.LEDGER_FAILED
        assert report.outcomes[0].error == "Ledger unavailable"
        stored = get_rule(store, rule_id)
        assert stored["last_processed"] == "2024-02-15"
        assert stored["next_process_date"] == "2024-03-15"
        assert stored["is_active"] is True

    def test_next_pass_retries_from_failed_occurrence(self):
        store, ledger, processor = self.make_failing_env({3})
        rule_id = add_rule(store)
        asyncio.run(processor.run(OWNER, date(2024, 4, 20)))

        created = asyncio.run(processor.process_due_occurrences(OWNER, date(2024, 4, 20)))

        assert created == 2
        assert sorted(t.date for t in transactions(ledger)) == [
            date(2024, 1, 15),
            date(2024, 2, 15),
            date(2024, 3, 15),
            date(2024, 4, 15),
        ]
        assert get_rule(store, rule_id)["next_process_date"] == "2024-05-15"

    def test_failure_past_end_date_keeps_rule_active(self):
        store, ledger, processor = self.make_failing_env({1})
        rule_id = add_rule(store, end_date=date(2024, 2, 1))

        asyncio.run(processor.run(OWNER, date(2024, 6, 1)))

        stored = get_rule(store, rule_id)
        assert stored["is_active"] is True
        assert stored["next_process_date"] == "2024-01-15"

    def test_raising_ledger_counts_as_failure(self):
        store = InMemoryRuleStore()
        processor = DueTransactionProcessor(rule_store=store, ledger=RaisingLedger())
        rule_id = add_rule(store)

        report = asyncio.run(processor.run(OWNER, date(2024, 4, 20)))

        assert report.transactions_created == 0
        assert report.outcomes[0].error == "connection reset"
        assert get_rule(store, rule_id)["next_process_date"] == "2024-01-15"

    def test_unknown_account_is_a_ledger_failure(self):
        store, ledger, _, processor = make_env()
        add_rule(store, account_id="acc-missing")

        report = asyncio.run(processor.run(OWNER, date(2024, 4, 20)))

        assert report.rules_failed == 1
        assert report.outcomes[0].stop_reason == StopReason.LEDGER_FAILED


class TestIterationCap:
    """Tests for bounded catch-up."""

    def make_capped_env(self, cap: int):
        store = InMemoryRuleStore()
        ledger = InMemoryLedger()
        ledger.add_account(OWNER, Account(id="acc-1"))
        materializer = Materializer(rule_store=store, ledger=ledger, max_iterations=cap)
        processor = DueTransactionProcessor(
            rule_store=store, ledger=ledger, materializer=materializer
        )
        return store, ledger, processor

    def test_cap_stops_and_persists_progress(self):
        store, ledger, processor = self.make_capped_env(10)
        rule_id = add_rule(store, frequency=Frequency.DAILY, start_date=date(2020, 1, 1))

        report = asyncio.run(processor.run(OWNER, date(2024, 1, 1)))

        assert report.transactions_created == 10
        assert report.outcomes[0].stop_reason == StopReason.CAP_REACHED
        assert report.outcomes[0].error is None
        stored = get_rule(store, rule_id)
        assert stored["next_process_date"] == "2020-01-11"
        assert stored["is_active"] is True

    def test_next_pass_resumes_where_cap_stopped(self):
        store, ledger, processor = self.make_capped_env(10)
        add_rule(store, frequency=Frequency.DAILY, start_date=date(2020, 1, 1))
        asyncio.run(processor.run(OWNER, date(2024, 1, 1)))

        asyncio.run(processor.run(OWNER, date(2024, 1, 1)))

        dates = sorted(t.date for t in transactions(ledger))
        assert len(dates) == 20
        assert len(set(dates)) == 20
        assert dates[-1] == date(2020, 1, 20)

    def test_default_cap_from_settings(self):
        store, ledger, _, processor = make_env()
        add_rule(store, frequency=Frequency.DAILY, start_date=date(2020, 1, 1))

        created = asyncio.run(processor.process_due_occurrences(OWNER, date(2024, 1, 1)))

        assert created == 730


class TestRuleIsolation:
    """Tests for one rule never stopping its siblings."""

    def test_invalid_rules_are_skipped_not_deactivated(self):
        store, ledger, _, processor = make_env()
        no_account = add_rule(store, account_id=None)
        zero_amount = add_rule(store, amount=Decimal("0"))
        add_rule(store)

        report = asyncio.run(processor.run(OWNER, date(2024, 4, 20)))

        assert report.rules_skipped == 2
        assert report.transactions_created == 4
        for rule_id in (no_account, zero_amount):
            stored = get_rule(store, rule_id)
            assert stored["is_active"] is True
            assert stored["next_process_date"] == "2024-01-15"

    def test_unparseable_document_is_skipped(self):
        store, ledger, _, processor = make_env()
        asyncio.run(store.add(OWNER, {
            "owner_id": OWNER,
            "amount": "10",
            "kind": "expense",
            "frequency": "monthly",
            "start_date": "not a date",
            "account_id": "acc-1",
            "is_active": True,
        }))
        add_rule(store)

        report = asyncio.run(processor.run(OWNER, date(2024, 4, 20)))

        assert report.rules_skipped == 1
        assert report.transactions_created == 4

    def test_unexpected_error_is_isolated(self):
        class BrokenStore(InMemoryRuleStore):
            broken_id = None

            async def update(self, owner_id, rule_id, fields):
                if rule_id == self.broken_id:
                    raise RuntimeError("disk on fire")
                await super().update(owner_id, rule_id, fields)

        store = BrokenStore()
        ledger = InMemoryLedger()
        ledger.add_account(OWNER, Account(id="acc-1"))
        processor = DueTransactionProcessor(rule_store=store, ledger=ledger)
        store.broken_id = add_rule(store)
        healthy_id = add_rule(store)

        report = asyncio.run(processor.run(OWNER, date(2024, 4, 20)))

        assert report.rules_failed == 1
        assert get_rule(store, healthy_id)["next_process_date"] == "2024-05-15"

    def test_cursor_write_failure_repeats_transactions(self):
        """Test at-least-once delivery when the cursor cannot be saved."""
        class ReadOnlyStore(InMemoryRuleStore):
            fail = True

            async def update(self, owner_id, rule_id, fields):
                if self.fail:
                    raise StoreConnectionError("store offline")
                await super().update(owner_id, rule_id, fields)

        store = ReadOnlyStore()
        ledger = InMemoryLedger()
        ledger.add_account(OWNER, Account(id="acc-1"))
        processor = DueTransactionProcessor(rule_store=store, ledger=ledger)
        add_rule(store, start_date=date(2024, 4, 15))

        report = asyncio.run(processor.run(OWNER, date(2024, 4, 20)))
        assert report.transactions_created == 1
        assert report.outcomes[0].error.startswith("Cursor update failed")

        store.fail = False
        asyncio.run(processor.run(OWNER, date(2024, 4, 20)))
        assert len(transactions(ledger)) == 2

    def test_listing_failure_propagates(self):
        class DownStore(InMemoryRuleStore):
            async def list_active(self, owner_id):
                raise StoreConnectionError("store offline")

        processor = DueTransactionProcessor(rule_store=DownStore(), ledger=InMemoryLedger())

        with pytest.raises(StoreConnectionError):
            asyncio.run(processor.run(OWNER, date(2024, 4, 20)))

    def test_other_owners_are_untouched(self):
        store, ledger, _, processor = make_env()
        other_id = asyncio.run(store.add("user-2", rule_document(owner_id="user-2")))

        asyncio.run(processor.run(OWNER, date(2024, 4, 20)))

        assert asyncio.run(store.get("user-2", other_id))["next_process_date"] == "2024-01-15"


class TestConcurrency:
    """Tests documenting the missing concurrency guard."""

    def test_overlapping_passes_duplicate_transactions(self):
        store = InMemoryRuleStore()
        ledger = YieldingLedger()
        ledger.add_account(OWNER, Account(id="acc-1"))
        processor = DueTransactionProcessor(rule_store=store, ledger=ledger)
        add_rule(store)

        async def both():
            return await asyncio.gather(
                processor.process_due_occurrences(OWNER, date(2024, 4, 20)),
                processor.process_due_occurrences(OWNER, date(2024, 4, 20)),
            )

        counts = asyncio.run(both())

        assert counts == [4, 4]
        assert len(transactions(ledger)) == 8


class TestAuditTrail:
    """Tests for events written during a pass."""

    def test_pass_events_share_correlation_id(self):
        store, ledger, audit_storage, processor = make_env()
        add_rule(store, end_date=date(2024, 2, 20))

        report = asyncio.run(processor.run(OWNER, date(2024, 4, 20)))

        events = asyncio.run(audit_storage.get_events_by_correlation_id(report.correlation_id))
        types = [e.event_type for e in events]
        assert types.count(AuditEventType.OCCURRENCE_MATERIALIZED) == 2
        assert AuditEventType.RULE_DEACTIVATED in types
        assert types[-1] == AuditEventType.PROCESSING_COMPLETED

    def test_skipped_rule_is_audited(self):
        store, ledger, audit_storage, processor = make_env()
        rule_id = add_rule(store, account_id=None)

        asyncio.run(processor.run(OWNER, date(2024, 4, 20)))

        events = asyncio.run(audit_storage.get_events_by_entity("recurring_rule", rule_id))
        assert [e.event_type for e in events] == [AuditEventType.RULE_SKIPPED]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
