"""
Tests for the transaction log
"""

import pytest
from decimal import Decimal
from datetime import datetime, timezone, timedelta

from retail_banking.audit import AuditTrail, AuditEventType
from retail_banking.currency import Money, Currency
from retail_banking.errors import ValidationError, NotFound
from retail_banking.storage import InMemoryStorage
from retail_banking.transactions import (
    TransactionLog, TransactionType, TransactionStatus
)


def xaf(amount):
    return Money(Decimal(amount), Currency.XAF)


class TestTransactionLog:

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit = AuditTrail(self.storage)
        self.log = TransactionLog(self.storage, self.audit)

    def record_transfer(self, txn_id="T1-out", amount="-3000", created_at=None):
        return self.log.record(
            transaction_id=txn_id,
            customer_id="alice",
            account_number="CCMC0000000001",
            transaction_type=TransactionType.TRANSFER_OUT,
            amount=xaf(amount),
            description="Rent",
            reference="TXN00000001",
            from_account="CCMC0000000001",
            to_account="CCMC0000000002",
            created_at=created_at
        )

    def record_payment(self, txn_id="T2-pay"):
        return self.log.record(
            transaction_id=txn_id,
            customer_id="alice",
            account_number="CCMC0000000001",
            transaction_type=TransactionType.PAYMENT,
            amount=xaf("-2000"),
            description="Electricity",
            reference="TXN00000002",
            from_account="CCMC0000000001",
            to_account="EXT-998877",
            status=TransactionStatus.PENDING,
            recipient_name="ENEO"
        )

    def test_record(self):
        txn = self.record_transfer()
        assert txn.is_debit
        stored = self.log.get_by_transaction_id("T1-out")
        assert stored.amount == xaf("-3000")
        assert stored.status == TransactionStatus.COMPLETED
        assert stored.to_account == "CCMC0000000002"

    def test_record_is_insert_if_absent(self):
        first = self.record_transfer()
        second = self.record_transfer(amount="-9999")
        assert second.amount == first.amount
        assert self.storage.count("transactions") == 1

    def test_list_for_customer_newest_first(self):
        now = datetime.now(timezone.utc)
        self.record_transfer("old", created_at=now - timedelta(days=40))
        self.record_transfer("new", created_at=now - timedelta(days=1))
        self.record_payment()

        ids = [t.transaction_id for t in self.log.list_for_customer("alice")]
        assert ids == ["T2-pay", "new", "old"]

        recent = self.log.list_for_customer("alice", start_date=now - timedelta(days=30))
        assert "old" not in [t.transaction_id for t in recent]

        payments = self.log.list_for_customer("alice", transaction_types=[TransactionType.PAYMENT])
        assert [t.transaction_id for t in payments] == ["T2-pay"]

        assert len(self.log.list_for_customer("alice", limit=2)) == 2
        assert self.log.list_for_customer("bob") == []

    def test_list_for_account_and_all(self):
        self.record_transfer()
        self.record_payment()
        assert len(self.log.list_for_account("CCMC0000000001")) == 2
        assert self.log.list_for_account("CCMC0000000002") == []
        pending = self.log.list_all(status=TransactionStatus.PENDING)
        assert [t.transaction_id for t in pending] == ["T2-pay"]

    def test_settle_payment(self):
        self.record_payment()
        settled = self.log.update_payment_status("T2-pay", TransactionStatus.COMPLETED, "admin-1")
        assert settled.status == TransactionStatus.COMPLETED
        assert settled.version == 1

        events = self.audit.get_events_for_entity("transaction", "T2-pay")
        assert events[0].event_type == AuditEventType.PAYMENT_SETTLED

    def test_settled_payment_is_final(self):
        self.record_payment()
        self.log.update_payment_status("T2-pay", TransactionStatus.FAILED, "admin-1")
        with pytest.raises(ValidationError):
            self.log.update_payment_status("T2-pay", TransactionStatus.COMPLETED, "admin-1")

    def test_only_payments_can_be_settled(self):
        self.record_transfer()
        with pytest.raises(ValidationError):
            self.log.update_payment_status("T1-out", TransactionStatus.FAILED, "admin-1")

    def test_pending_is_not_a_settlement(self):
        self.record_payment()
        with pytest.raises(ValidationError):
            self.log.update_payment_status("T2-pay", TransactionStatus.PENDING, "admin-1")

    def test_unknown_transaction(self):
        with pytest.raises(NotFound):
            self.log.update_payment_status("missing", TransactionStatus.COMPLETED, "admin-1")
