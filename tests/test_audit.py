"""
Tests for the hash-chained audit trail
"""

import pytest
from datetime import datetime, timezone, timedelta

from retail_banking.audit import AuditTrail, AuditEventType
from retail_banking.storage import InMemoryStorage, SQLiteStorage


class TestAuditTrail:

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit = AuditTrail(self.storage)

    def log_sample_events(self):
        self.audit.log_event(AuditEventType.CUSTOMER_REGISTERED, "customer", "c1",
                             {"email": "alice@example.com"}, user_id="c1")
        self.audit.log_event(AuditEventType.ACCOUNT_OPENED, "account", "a1",
                             {"account_number": "CCMC0000000001"}, user_id="c1")
        self.audit.log_event(AuditEventType.ACCOUNT_APPROVED, "account", "a1",
                             {"old_state": "pending", "new_state": "active"}, user_id="admin")

    def test_events_are_chained(self):
        self.log_sample_events()
        events = self.audit.get_events_for_entity("account", "a1")

        assert [e.sequence for e in events] == [2, 3]
        assert events[1].previous_hash == events[0].current_hash
        assert all(e.verify_hash() for e in events)

    def test_first_event_has_empty_previous_hash(self):
        event = self.audit.log_event(AuditEventType.LOGIN_SUCCESS, "customer", "c1")
        assert event.sequence == 1
        assert event.previous_hash == ""

    def test_verify_integrity_of_clean_chain(self):
        self.log_sample_events()
        result = self.audit.verify_integrity()
        assert result["valid"]
        assert result["total_events"] == 3
        assert result["hash_errors"] == []
        assert result["chain_breaks"] == []

    def test_tampering_is_detected(self):
        self.log_sample_events()
        target = self.audit.get_events_for_entity("customer", "c1")[0]
        record = self.storage.load("audit_events", target.id)
        record["metadata"]["email"] = "mallory@example.com"
        self.storage.save("audit_events", target.id, record)

        result = self.audit.verify_integrity()
        assert not result["valid"]
        assert result["hash_errors"][0]["event_id"] == target.id

    def test_deleted_event_breaks_chain(self):
        self.log_sample_events()
        middle = self.audit.get_events_for_entity("account", "a1")[0]
        self.storage.delete("audit_events", middle.id)

        result = self.audit.verify_integrity()
        assert not result["valid"]
        assert len(result["chain_breaks"]) == 1

    def test_new_trail_continues_existing_chain(self):
        self.log_sample_events()
        reopened = AuditTrail(self.storage)
        event = reopened.log_event(AuditEventType.LOGIN_SUCCESS, "customer", "c1")
        assert event.sequence == 4
        assert reopened.verify_integrity()["valid"]

    def test_search(self):
        self.log_sample_events()

        by_user = self.audit.search_events(user_id="c1")
        assert [e.sequence for e in by_user] == [2, 1]

        by_type = self.audit.search_events(event_type=AuditEventType.ACCOUNT_APPROVED)
        assert len(by_type) == 1

        by_text = self.audit.search_events(text="ALICE@")
        assert [e.entity_id for e in by_text] == ["c1"]

        assert len(self.audit.search_events(entity_type="account", limit=1)) == 1

    def test_search_by_time(self):
        self.log_sample_events()
        future = datetime.now(timezone.utc) + timedelta(hours=1)
        assert self.audit.search_events(start_time=future) == []
        assert len(self.audit.search_events(end_time=future)) == 3

    def test_decimal_and_enum_metadata_are_serialized(self):
        from decimal import Decimal
        event = self.audit.log_event(
            AuditEventType.LOAN_APPLIED, "loan", "l1",
            {"monthly_payment": Decimal('152.09'), "type": AuditEventType.LOAN_APPLIED}
        )
        assert event.metadata == {"monthly_payment": "152.09", "type": "loan_applied"}
        assert self.audit.verify_integrity()["valid"]

    def test_count(self):
        self.log_sample_events()
        assert self.audit.count_events() == 3


class TestAuditTrailOnSQLite:

    def test_chain_verifies_after_round_trip(self):
        storage = SQLiteStorage(":memory:")
        audit = AuditTrail(storage)
        audit.log_event(AuditEventType.SETTING_CHANGED, "setting", "bank_name",
                        {"old_value": "CCMC Bank", "new_value": "CCMC"}, user_id="admin")
        audit.log_event(AuditEventType.LOGIN_FAILED, "customer", "nobody@example.com")
        assert audit.verify_integrity()["valid"]
        storage.close()
