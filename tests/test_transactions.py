"""
Test suite for the transaction ledger

Covers id stamping, the standalone recording path, lookups and history
ordering.
"""

import pytest
from decimal import Decimal

from core_ledger.accounts import AccountStore
from core_ledger.events import DomainEvent, EventDispatcher
from core_ledger.exceptions import (
    InvalidAmountError, TransactionNotFoundError, TransientStoreError
)
from core_ledger.ids import IdGenerator
from core_ledger.storage import InMemoryStorage
from core_ledger.transactions import (
    PaymentMethod, TransactionLedger, TransactionStatus
)


class ScriptedIds(IdGenerator):
    """Returns transaction ids from a script"""

    def __init__(self, ids):
        super().__init__()
        self.ids = iter(ids)

    def next_transaction_id(self):
        return next(self.ids)


class TestTransactionLedger:
    """Test ledger functionality"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.events = EventDispatcher()
        self.recorded = []
        self.events.subscribe(DomainEvent.TRANSACTION_RECORDED, self.recorded.append)
        self.ledger = TransactionLedger(self.storage, IdGenerator(), events=self.events)

    def test_record_external_is_pending(self):
        transaction = self.ledger.record_external("alice", "500.00", "CARD", description="laptop")

        assert transaction.status == TransactionStatus.PENDING
        assert transaction.payment_method == "CARD"
        assert transaction.amount == Decimal("500.00")
        assert transaction.account_id is None
        assert transaction.id.startswith("TXN")
        assert self.ledger.get(transaction.id) == transaction

    def test_record_external_keeps_given_status(self):
        transaction = self.ledger.record_external(
            "alice", "5.00", PaymentMethod.DEPOSIT, status=TransactionStatus.COMPLETED
        )
        assert transaction.status == TransactionStatus.COMPLETED
        assert transaction.payment_method == "DEPOSIT"

    def test_record_external_never_touches_balances(self):
        accounts = AccountStore(self.storage, IdGenerator())
        account = accounts.create("alice")

        self.ledger.record_external("alice", "500.00", "CARD")

        stored = accounts.get(account.id)
        assert stored.balance == Decimal("0.00")
        assert stored.version == 0

    def test_record_external_rejects_bad_amount(self):
        with pytest.raises(InvalidAmountError):
            self.ledger.record_external("alice", "0", "CARD")
        assert self.ledger.count() == 0

    def test_record_external_publishes_event(self):
        transaction = self.ledger.record_external("alice", "1.00", "CARD")
        assert len(self.recorded) == 1
        assert self.recorded[0].entity_id == transaction.id

    def test_get_unknown(self):
        with pytest.raises(TransactionNotFoundError):
            self.ledger.get("TXN-missing")

    def test_not_found_is_lookup_error(self):
        with pytest.raises(LookupError):
            self.ledger.get("TXN-missing")

    def test_history_newest_first(self):
        first = self.ledger.record_external("alice", "1.00", "CARD")
        second = self.ledger.record_external("alice", "2.00", "CARD")
        third = self.ledger.record_external("alice", "3.00", "CARD")
        self.ledger.record_external("bob", "4.00", "CARD")

        history = self.ledger.list_for_owner("alice")

        assert [t.id for t in history] == [third.id, second.id, first.id]
        assert self.ledger.list_for_owner("nobody") == []

    def test_duplicate_id_retried(self):
        sleeps = []
        ledger = TransactionLedger(
            self.storage, ScriptedIds(["TXN-A", "TXN-A", "TXN-B"]),
            backoff_seconds=0.01, sleep=sleeps.append
        )

        first = ledger.append("alice", Decimal("1.00"), TransactionStatus.COMPLETED, PaymentMethod.DEPOSIT)
        second = ledger.append("alice", Decimal("2.00"), TransactionStatus.COMPLETED, PaymentMethod.DEPOSIT)

        assert first.id == "TXN-A"
        assert second.id == "TXN-B"
        assert sleeps == [0.01]
        assert ledger.get("TXN-A").amount == Decimal("1.00")

    def test_duplicate_id_retries_bounded(self):
        ledger = TransactionLedger(
            self.storage, ScriptedIds(["TXN-A"] * 4), max_attempts=3, sleep=lambda s: None
        )
        ledger.append("alice", Decimal("1.00"), TransactionStatus.COMPLETED, "DEPOSIT")

        with pytest.raises(TransientStoreError):
            ledger.append("alice", Decimal("2.00"), TransactionStatus.COMPLETED, "DEPOSIT")
        assert ledger.count() == 1
