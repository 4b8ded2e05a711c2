"""
Customer Management Module

Manages customer profiles, credentials, admin approval of new customers,
roles and per-customer notification settings.
"""

from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional, Any
import hashlib
import secrets
import uuid
import re

from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .identity import Role, ApprovalStatus, CurrentIdentity
from .errors import ValidationError, NotFound, NotAuthorized
from .logging_config import get_logger, log_action


EMAIL_PATTERN = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'

NOTIFICATION_SETTINGS = (
    "email_transaction_alerts",
    "email_promotional_offers",
    "allow_phone_contact_for_support",
    "allow_phone_contact_for_offers",
)


@dataclass
class Customer(StorageRecord):
    """
    Customer profile with role and approval status
    """
    first_name: str
    last_name: str
    email: str
    phone: Optional[str] = None
    address: Optional[str] = None
    role: Role = Role.CUSTOMER
    approval_status: ApprovalStatus = ApprovalStatus.PENDING
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    password_hash: Optional[str] = None
    password_salt: Optional[str] = None
    email_transaction_alerts: bool = True
    email_promotional_offers: bool = False
    allow_phone_contact_for_support: bool = True
    allow_phone_contact_for_offers: bool = False

    def __post_init__(self):
        if not re.match(EMAIL_PATTERN, self.email):
            raise ValidationError("Invalid email format")
        if not self.first_name or not self.last_name:
            raise ValidationError("First and last name are required")

    @property
    def full_name(self) -> str:
        """Get customer's full name"""
        return f"{self.first_name} {self.last_name}"

    def to_identity(self) -> CurrentIdentity:
        return CurrentIdentity(
            id=self.id,
            role=self.role,
            approval_status=self.approval_status
        )

    def settings(self) -> Dict[str, bool]:
        return {name: getattr(self, name) for name in NOTIFICATION_SETTINGS}


class CustomerManager:
    """
    Manages customer lifecycle: registration, profile updates, admin review,
    role changes and notification settings
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        min_password_length: int = 8
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.table_name = "customers"
        self.min_password_length = min_password_length
        self.logger = get_logger("retail_banking.customers")

    def register_customer(
        self,
        first_name: str,
        last_name: str,
        email: str,
        password: str,
        phone: Optional[str] = None,
        address: Optional[str] = None,
        role: Role = Role.CUSTOMER
    ) -> Customer:
        """
        Register a new customer. Customers start pending admin approval;
        admins created directly are approved.

        Args:
            first_name: Customer's first name
            last_name: Customer's last name
            email: Login email, unique (case-insensitive)
            password: Plain-text password, hashed before storage
            phone: Optional phone number
            address: Optional postal address
            role: Role to grant

        Returns:
            Created Customer object

        Raises:
            ValidationError: Bad email, weak password or duplicate email
        """
        email = email.strip().lower()
        if len(password or "") < self.min_password_length:
            raise ValidationError(
                f"Password must be at least {self.min_password_length} characters"
            )
        if self.get_customer_by_email(email):
            raise ValidationError(f"Email {email} is already registered")

        now = datetime.now(timezone.utc)
        customer = Customer(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            first_name=first_name.strip(),
            last_name=last_name.strip(),
            email=email,
            phone=phone,
            address=address,
            role=role,
            approval_status=ApprovalStatus.APPROVED if role == Role.ADMIN else ApprovalStatus.PENDING
        )
        customer.password_salt = secrets.token_hex(16)
        customer.password_hash = self._hash_password(password, customer.password_salt)

        self._save_customer(customer)

        self.audit_trail.log_event(
            event_type=AuditEventType.CUSTOMER_REGISTERED,
            entity_type="customer",
            entity_id=customer.id,
            metadata={
                "full_name": customer.full_name,
                "email": email,
                "role": role.value
            },
            user_id=customer.id
        )
        log_action(self.logger, "info", f"Customer registered: {customer.id}",
                   user_id=customer.id, action="register_customer",
                   resource=f"customer:{customer.id}")

        return customer

    def authenticate(self, email: str, password: str) -> Customer:
        """
        Check credentials.

        Raises:
            NotAuthorized: Unknown email or wrong password
        """
        customer = self.get_customer_by_email(email.strip().lower())
        if not customer or not customer.password_hash:
            self._log_login_failed(email)
            raise NotAuthorized("Invalid email or password")

        expected = self._hash_password(password, customer.password_salt)
        if not secrets.compare_digest(expected, customer.password_hash):
            self._log_login_failed(email)
            raise NotAuthorized("Invalid email or password")

        self.audit_trail.log_event(
            event_type=AuditEventType.LOGIN_SUCCESS,
            entity_type="customer",
            entity_id=customer.id,
            user_id=customer.id
        )
        return customer

    def get_customer(self, customer_id: str) -> Optional[Customer]:
        """Get customer by ID"""
        customer_dict = self.storage.load(self.table_name, customer_id)
        if customer_dict:
            return self._customer_from_dict(customer_dict)
        return None

    def require_customer(self, customer_id: str) -> Customer:
        customer = self.get_customer(customer_id)
        if not customer:
            raise NotFound(f"Customer {customer_id} not found")
        return customer

    def get_customer_by_email(self, email: str) -> Optional[Customer]:
        """Get customer by email address"""
        customers = self.storage.find(self.table_name, {"email": email.lower()})
        if customers:
            return self._customer_from_dict(customers[0])
        return None

    def resolve_identity(self, customer_id: str) -> Optional[CurrentIdentity]:
        """Identity resolver used by the identity cache"""
        customer = self.get_customer(customer_id)
        return customer.to_identity() if customer else None

    def list_customers(
        self,
        status: Optional[ApprovalStatus] = None,
        role: Optional[Role] = None
    ) -> List[Customer]:
        """List customers, newest first, optionally filtered"""
        filters: Dict[str, Any] = {}
        if status:
            filters['approval_status'] = status.value
        if role:
            filters['role'] = role.value
        customers = [
            self._customer_from_dict(data)
            for data in self.storage.find(self.table_name, filters)
        ]
        customers.sort(key=lambda c: c.created_at, reverse=True)
        return customers

    def update_profile(
        self,
        customer_id: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        phone: Optional[str] = None,
        address: Optional[str] = None
    ) -> Customer:
        """Update customer information"""
        customer = self.require_customer(customer_id)

        old_data = {
            "first_name": customer.first_name,
            "last_name": customer.last_name,
            "phone": customer.phone,
            "address": customer.address
        }

        if first_name is not None:
            customer.first_name = first_name.strip()
        if last_name is not None:
            customer.last_name = last_name.strip()
        if phone is not None:
            customer.phone = phone
        if address is not None:
            customer.address = address
        if not customer.first_name or not customer.last_name:
            raise ValidationError("First and last name are required")

        customer.updated_at = datetime.now(timezone.utc)
        self._save_customer(customer)

        self.audit_trail.log_event(
            event_type=AuditEventType.CUSTOMER_UPDATED,
            entity_type="customer",
            entity_id=customer.id,
            metadata={
                "old_data": old_data,
                "new_data": {
                    "first_name": customer.first_name,
                    "last_name": customer.last_name,
                    "phone": customer.phone,
                    "address": customer.address
                }
            },
            user_id=customer_id
        )

        return customer

    def approve_customer(self, customer_id: str, admin_id: str) -> Customer:
        """Approve a pending (or previously rejected) customer"""
        return self._review(customer_id, admin_id, ApprovalStatus.APPROVED)

    def reject_customer(self, customer_id: str, admin_id: str, reason: str) -> Customer:
        """Reject a customer with a reason shown to them"""
        if not reason or not reason.strip():
            raise ValidationError("Rejection reason is required")
        return self._review(customer_id, admin_id, ApprovalStatus.REJECTED, reason.strip())

    def _review(
        self,
        customer_id: str,
        admin_id: str,
        new_status: ApprovalStatus,
        reason: Optional[str] = None
    ) -> Customer:
        customer = self.require_customer(customer_id)
        old_status = customer.approval_status

        now = datetime.now(timezone.utc)
        customer.approval_status = new_status
        customer.reviewed_by = admin_id
        customer.reviewed_at = now
        customer.rejection_reason = reason
        customer.updated_at = now
        self._save_customer(customer)

        event_type = (
            AuditEventType.CUSTOMER_APPROVED if new_status == ApprovalStatus.APPROVED
            else AuditEventType.CUSTOMER_REJECTED
        )
        self.audit_trail.log_event(
            event_type=event_type,
            entity_type="customer",
            entity_id=customer.id,
            metadata={
                "old_status": old_status.value,
                "new_status": new_status.value,
                "reason": reason
            },
            user_id=admin_id
        )
        log_action(self.logger, "info",
                   f"Customer {customer.id} {new_status.value} by {admin_id}",
                   user_id=admin_id, action=f"customer_{new_status.value}",
                   resource=f"customer:{customer.id}")

        return customer

    def set_role(self, customer_id: str, role: Role, admin_id: str) -> Customer:
        """Grant or revoke the admin role"""
        customer = self.require_customer(customer_id)
        old_role = customer.role
        if old_role == role:
            return customer

        customer.role = role
        customer.updated_at = datetime.now(timezone.utc)
        self._save_customer(customer)

        self.audit_trail.log_event(
            event_type=AuditEventType.ROLE_CHANGED,
            entity_type="customer",
            entity_id=customer.id,
            metadata={"old_role": old_role.value, "new_role": role.value},
            user_id=admin_id
        )

        return customer

    def get_settings(self, customer_id: str) -> Dict[str, bool]:
        """Get notification preferences"""
        return self.require_customer(customer_id).settings()

    def update_settings(self, customer_id: str, **changes: bool) -> Dict[str, bool]:
        """Update notification preferences; unknown keys are rejected"""
        unknown = set(changes) - set(NOTIFICATION_SETTINGS)
        if unknown:
            raise ValidationError(f"Unknown settings: {', '.join(sorted(unknown))}")

        customer = self.require_customer(customer_id)
        for name, value in changes.items():
            setattr(customer, name, bool(value))
        customer.updated_at = datetime.now(timezone.utc)
        self._save_customer(customer)

        self.audit_trail.log_event(
            event_type=AuditEventType.CUSTOMER_SETTINGS_UPDATED,
            entity_type="customer",
            entity_id=customer.id,
            metadata=changes,
            user_id=customer_id
        )

        return customer.settings()

    def _log_login_failed(self, email: str) -> None:
        self.audit_trail.log_event(
            event_type=AuditEventType.LOGIN_FAILED,
            entity_type="customer",
            entity_id=email,
            metadata={"reason": "invalid_credentials"}
        )
        log_action(self.logger, "warning", f"Failed login for {email}",
                   action="login_failed", resource=f"customer:{email}")

    def _hash_password(self, password: str, salt: str) -> str:
        """Hash password with salt using scrypt"""
        return hashlib.scrypt(
            password.encode(),
            salt=salt.encode(),
            n=16384, r=8, p=1
        ).hex()

    def _save_customer(self, customer: Customer) -> None:
        """Save customer to storage"""
        self.storage.save(self.table_name, customer.id, self._customer_to_dict(customer))

    def _customer_to_dict(self, customer: Customer) -> Dict:
        """Convert Customer to dictionary for storage"""
        result = customer.to_dict()
        result['role'] = customer.role.value
        result['approval_status'] = customer.approval_status.value
        if customer.reviewed_at:
            result['reviewed_at'] = customer.reviewed_at.isoformat()
        return result

    def _customer_from_dict(self, data: Dict) -> Customer:
        """Convert dictionary to Customer"""
        reviewed_at = None
        if data.get('reviewed_at'):
            reviewed_at = datetime.fromisoformat(data['reviewed_at'])

        return Customer(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            first_name=data['first_name'],
            last_name=data['last_name'],
            email=data['email'],
            phone=data.get('phone'),
            address=data.get('address'),
            role=Role(data['role']),
            approval_status=ApprovalStatus(data['approval_status']),
            reviewed_by=data.get('reviewed_by'),
            reviewed_at=reviewed_at,
            rejection_reason=data.get('rejection_reason'),
            password_hash=data.get('password_hash'),
            password_salt=data.get('password_salt'),
            email_transaction_alerts=data.get('email_transaction_alerts', True),
            email_promotional_offers=data.get('email_promotional_offers', False),
            allow_phone_contact_for_support=data.get('allow_phone_contact_for_support', True),
            allow_phone_contact_for_offers=data.get('allow_phone_contact_for_offers', False)
        )
