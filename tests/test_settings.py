"""
Tests for system settings and the security event register
"""

import pytest

from retail_banking.audit import AuditTrail, AuditEventType
from retail_banking.errors import ValidationError, NotFound
from retail_banking.settings import (
    SettingsManager, SecurityEventManager, Severity, DEFAULT_SETTINGS
)
from retail_banking.storage import InMemoryStorage


class TestSettingsManager:

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit = AuditTrail(self.storage)
        self.settings = SettingsManager(self.storage, self.audit)

    def test_defaults(self):
        assert self.settings.get("bank_name") == "CCMC Bank"
        assert self.settings.get("min_credit_score") == 600
        assert self.settings.all() == DEFAULT_SETTINGS

    def test_unknown_key(self):
        with pytest.raises(NotFound):
            self.settings.get("does_not_exist")

    def test_set_overrides_default(self):
        self.settings.set("min_credit_score", 650, "admin-1", "Raised after review")
        assert self.settings.get("min_credit_score") == 650
        assert self.settings.all()["min_credit_score"] == 650

        events = self.audit.get_events_for_entity("setting", "min_credit_score")
        assert events[0].event_type == AuditEventType.SETTING_CHANGED
        assert events[0].metadata == {"old_value": 600, "new_value": 650}

    def test_description_is_kept_on_update(self):
        self.settings.set("bank_name", "CCMC", "admin-1", "Display name")
        setting = self.settings.set("bank_name", "CCMC Bank SA", "admin-1")
        assert setting.description == "Display name"

    def test_type_must_match_default(self):
        with pytest.raises(ValidationError):
            self.settings.set("min_credit_score", "650", "admin-1")
        with pytest.raises(ValidationError):
            self.settings.set("bank_name", 42, "admin-1")

    def test_bool_and_int_are_distinct(self):
        with pytest.raises(ValidationError):
            self.settings.set("require_two_factor", 1, "admin-1")
        with pytest.raises(ValidationError):
            self.settings.set("min_credit_score", True, "admin-1")
        self.settings.set("require_two_factor", False, "admin-1")
        assert self.settings.get("require_two_factor") is False

    def test_custom_keys_are_free_form(self):
        self.settings.set("maintenance_banner", "Back at 9am", "admin-1")
        assert self.settings.get("maintenance_banner") == "Back at 9am"


class TestSecurityEvents:

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit = AuditTrail(self.storage)
        self.events = SecurityEventManager(self.storage, self.audit)

    def test_record_and_list(self):
        low = self.events.record_security_event("login_failed", "Bad password", Severity.LOW)
        critical = self.events.record_security_event(
            "partial_transfer", "Refund failed", Severity.CRITICAL,
            metadata={"intent_id": "TI123"}
        )

        listed = self.events.list_security_events()
        assert {e.id for e in listed} == {critical.id, low.id}
        assert listed[0].created_at >= listed[1].created_at
        assert self.events.list_security_events(severity=Severity.CRITICAL)[0].metadata == {"intent_id": "TI123"}
        assert len(self.events.list_security_events(resolved=False)) == 2

    def test_resolve(self):
        event = self.events.record_security_event("partial_transfer", "Refund failed", Severity.HIGH)
        resolved = self.events.resolve_security_event(event.id, "admin-1")

        assert resolved.resolved
        assert resolved.resolved_by == "admin-1"
        assert resolved.resolved_at is not None
        assert self.events.list_security_events(resolved=False) == []
        assert self.events.get_security_event(event.id).resolved

    def test_resolve_twice_is_harmless(self):
        event = self.events.record_security_event("x", "y")
        first = self.events.resolve_security_event(event.id, "admin-1")
        second = self.events.resolve_security_event(event.id, "admin-2")
        assert second.resolved_by == first.resolved_by

    def test_resolve_unknown(self):
        with pytest.raises(NotFound):
            self.events.resolve_security_event("missing", "admin-1")

    def test_events_are_audited(self):
        event = self.events.record_security_event("x", "y", user_id="c1")
        self.events.resolve_security_event(event.id, "admin-1")
        types = [e.event_type for e in self.audit.get_events_for_entity("security_event", event.id)]
        assert types == [AuditEventType.SECURITY_EVENT_RECORDED, AuditEventType.SECURITY_EVENT_RESOLVED]
