"""
Test suite for customer management

Registration, authentication, admin review, roles and notification settings.
"""

import pytest

from retail_banking.audit import AuditTrail, AuditEventType
from retail_banking.customers import CustomerManager
from retail_banking.errors import ValidationError, NotAuthorized, NotFound
from retail_banking.identity import Role, ApprovalStatus
from retail_banking.storage import InMemoryStorage


class TestCustomerManager:

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit = AuditTrail(self.storage)
        self.customers = CustomerManager(self.storage, self.audit)
        self.admin = self.customers.register_customer(
            "Bank", "Admin", "admin@ccmcbank.com", "password123", role=Role.ADMIN
        )

    def register(self, email="alice@example.com", password="password123"):
        return self.customers.register_customer(
            "Alice", "Fouda", email, password, phone="+237600000000"
        )

    def test_register_starts_pending(self):
        customer = self.register()
        assert customer.approval_status == ApprovalStatus.PENDING
        assert customer.role == Role.CUSTOMER
        assert customer.full_name == "Alice Fouda"
        assert customer.password_hash and customer.password_hash != "password123"
        assert not customer.to_identity().can_transfer

    def test_admin_starts_approved(self):
        assert self.admin.approval_status == ApprovalStatus.APPROVED
        assert self.admin.to_identity().is_admin

    def test_email_is_normalized_and_unique(self):
        customer = self.register(email="  Alice@Example.com ")
        assert customer.email == "alice@example.com"
        with pytest.raises(ValidationError):
            self.register(email="ALICE@example.com")

    def test_invalid_email(self):
        with pytest.raises(ValidationError):
            self.register(email="not-an-email")

    def test_short_password(self):
        with pytest.raises(ValidationError):
            self.register(password="short")

    def test_authenticate(self):
        customer = self.register()
        assert self.customers.authenticate("ALICE@example.com", "password123").id == customer.id

    def test_authenticate_failures(self):
        self.register()
        with pytest.raises(NotAuthorized):
            self.customers.authenticate("alice@example.com", "wrong-password")
        with pytest.raises(NotAuthorized):
            self.customers.authenticate("nobody@example.com", "password123")

        failures = self.audit.search_events(event_type=AuditEventType.LOGIN_FAILED)
        assert len(failures) == 2

    def test_approve(self):
        customer = self.register()
        approved = self.customers.approve_customer(customer.id, self.admin.id)
        assert approved.approval_status == ApprovalStatus.APPROVED
        assert approved.reviewed_by == self.admin.id
        assert self.customers.resolve_identity(customer.id).can_transfer

    def test_reject_requires_reason(self):
        customer = self.register()
        with pytest.raises(ValidationError):
            self.customers.reject_customer(customer.id, self.admin.id, "")
        rejected = self.customers.reject_customer(customer.id, self.admin.id, "Documents missing")
        assert rejected.approval_status == ApprovalStatus.REJECTED
        assert rejected.rejection_reason == "Documents missing"

    def test_rejected_customer_can_be_approved_later(self):
        customer = self.register()
        self.customers.reject_customer(customer.id, self.admin.id, "Documents missing")
        approved = self.customers.approve_customer(customer.id, self.admin.id)
        assert approved.rejection_reason is None

    def test_list_customers(self):
        customer = self.register()
        pending = self.customers.list_customers(status=ApprovalStatus.PENDING)
        assert [c.id for c in pending] == [customer.id]
        admins = self.customers.list_customers(role=Role.ADMIN)
        assert [c.id for c in admins] == [self.admin.id]

    def test_set_role(self):
        customer = self.register()
        promoted = self.customers.set_role(customer.id, Role.ADMIN, self.admin.id)
        assert promoted.to_identity().is_admin
        events = self.audit.search_events(event_type=AuditEventType.ROLE_CHANGED)
        assert events[0].metadata == {"old_role": "customer", "new_role": "admin"}

    def test_update_profile(self):
        customer = self.register()
        updated = self.customers.update_profile(customer.id, address="Bonapriso, Douala")
        assert updated.address == "Bonapriso, Douala"
        assert updated.first_name == "Alice"
        with pytest.raises(ValidationError):
            self.customers.update_profile(customer.id, first_name="  ")

    def test_settings(self):
        customer = self.register()
        settings = self.customers.get_settings(customer.id)
        assert settings["email_transaction_alerts"] is True
        assert settings["email_promotional_offers"] is False

        updated = self.customers.update_settings(customer.id, email_promotional_offers=True)
        assert updated["email_promotional_offers"] is True
        assert self.customers.get_settings(customer.id)["email_promotional_offers"] is True

    def test_unknown_setting(self):
        customer = self.register()
        with pytest.raises(ValidationError):
            self.customers.update_settings(customer.id, dark_mode=True)

    def test_unknown_customer(self):
        assert self.customers.get_customer("missing") is None
        with pytest.raises(NotFound):
            self.customers.approve_customer("missing", self.admin.id)
