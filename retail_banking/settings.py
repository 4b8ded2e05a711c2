"""
System Settings and Security Events

Admin-editable bank settings (with built-in defaults) and the security event
register reviewed on the admin security screen. Partial transfer failures
land here for manual reconciliation.
"""

from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from enum import Enum
import uuid

from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .errors import ValidationError, NotFound
from .logging_config import get_logger, log_action


DEFAULT_SETTINGS: Dict[str, Any] = {
    "bank_name": "CCMC Bank",
    "admin_email": "admin@ccmcbank.com",
    "support_phone": "(237) 653-225-597",
    "bank_address": "123 Financial District, Douala, Cameroon",
    "min_credit_score": 600,
    "max_loan_amount": 200000000,
    "auto_approval_limit": 1000000,
    "require_two_factor": True,
    "session_timeout_enabled": True,
    "ip_whitelisting": False,
    "enhanced_audit_logging": True,
    "min_password_length": 8,
    "password_expiry_days": 90,
}


class Severity(Enum):
    """Security event severity"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass
class SystemSetting(StorageRecord):
    key: str
    value: Any
    description: Optional[str] = None
    updated_by: Optional[str] = None


@dataclass
class SecurityEvent(StorageRecord):
    """A security-relevant occurrence awaiting admin review"""
    event_type: str
    description: str
    severity: Severity
    user_id: Optional[str] = None
    ip_address: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    resolved: bool = False
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None


def _same_kind(default: Any, value: Any) -> bool:
    # bool is an int subclass; keep them apart
    if isinstance(default, bool) or isinstance(value, bool):
        return isinstance(default, bool) and isinstance(value, bool)
    if isinstance(default, int):
        return isinstance(value, int)
    return isinstance(value, type(default))


class SettingsManager:
    """
    Key/value system settings stored as JSON values
    """

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail):
        self.storage = storage
        self.audit_trail = audit_trail
        self.table_name = "system_settings"
        self.logger = get_logger("retail_banking.settings")

    def get(self, key: str) -> Any:
        """Stored value, else the built-in default"""
        data = self.storage.load(self.table_name, key)
        if data:
            return data['value']
        if key in DEFAULT_SETTINGS:
            return DEFAULT_SETTINGS[key]
        raise NotFound(f"Setting {key} not found")

    def set(
        self,
        key: str,
        value: Any,
        admin_id: str,
        description: Optional[str] = None
    ) -> SystemSetting:
        """
        Store a setting. Known settings keep the type of their default.

        Raises:
            ValidationError: Value type does not match the default's type
        """
        if key in DEFAULT_SETTINGS and not _same_kind(DEFAULT_SETTINGS[key], value):
            raise ValidationError(
                f"Setting {key} expects {type(DEFAULT_SETTINGS[key]).__name__}"
            )

        now = datetime.now(timezone.utc)
        existing = self.storage.load(self.table_name, key)
        old_value = existing['value'] if existing else DEFAULT_SETTINGS.get(key)
        setting = SystemSetting(
            id=key,
            created_at=datetime.fromisoformat(existing['created_at']) if existing else now,
            updated_at=now,
            key=key,
            value=value,
            description=description or (existing or {}).get('description'),
            updated_by=admin_id
        )
        self.storage.save(self.table_name, key, setting.to_dict())

        self.audit_trail.log_event(
            event_type=AuditEventType.SETTING_CHANGED,
            entity_type="setting",
            entity_id=key,
            metadata={"old_value": old_value, "new_value": value},
            user_id=admin_id
        )
        return setting

    def all(self) -> Dict[str, Any]:
        """All settings, defaults overlaid with stored values"""
        result = dict(DEFAULT_SETTINGS)
        for data in self.storage.load_all(self.table_name):
            result[data['key']] = data['value']
        return result


class SecurityEventManager:
    """
    Security event register
    """

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail):
        self.storage = storage
        self.audit_trail = audit_trail
        self.table_name = "security_events"
        self.logger = get_logger("retail_banking.security")

    def record_security_event(
        self,
        event_type: str,
        description: str,
        severity: Severity = Severity.MEDIUM,
        user_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> SecurityEvent:
        """Record a new unresolved security event"""
        now = datetime.now(timezone.utc)
        event = SecurityEvent(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            event_type=event_type,
            description=description,
            severity=severity,
            user_id=user_id,
            ip_address=ip_address,
            metadata=metadata or {}
        )
        self.storage.save(self.table_name, event.id, self._event_to_dict(event))

        self.audit_trail.log_event(
            event_type=AuditEventType.SECURITY_EVENT_RECORDED,
            entity_type="security_event",
            entity_id=event.id,
            metadata={"event_type": event_type, "severity": severity.value},
            user_id=user_id
        )
        level = "critical" if severity == Severity.CRITICAL else "warning"
        log_action(self.logger, level, f"Security event: {description}",
                   user_id=user_id, action=event_type,
                   resource=f"security_event:{event.id}", extra=event.metadata)

        return event

    def get_security_event(self, event_id: str) -> Optional[SecurityEvent]:
        data = self.storage.load(self.table_name, event_id)
        return self._event_from_dict(data) if data else None

    def list_security_events(
        self,
        resolved: Optional[bool] = None,
        severity: Optional[Severity] = None
    ) -> List[SecurityEvent]:
        """Security events, newest first"""
        filters: Dict[str, Any] = {}
        if resolved is not None:
            filters['resolved'] = resolved
        if severity:
            filters['severity'] = severity.value
        events = [self._event_from_dict(d) for d in self.storage.find(self.table_name, filters)]
        events.sort(key=lambda e: e.created_at, reverse=True)
        return events

    def resolve_security_event(self, event_id: str, admin_id: str) -> SecurityEvent:
        """Mark a security event as handled"""
        event = self.get_security_event(event_id)
        if not event:
            raise NotFound(f"Security event {event_id} not found")
        if event.resolved:
            return event

        now = datetime.now(timezone.utc)
        event.resolved = True
        event.resolved_by = admin_id
        event.resolved_at = now
        event.updated_at = now
        self.storage.save(self.table_name, event.id, self._event_to_dict(event))

        self.audit_trail.log_event(
            event_type=AuditEventType.SECURITY_EVENT_RESOLVED,
            entity_type="security_event",
            entity_id=event.id,
            user_id=admin_id
        )
        return event

    def _event_to_dict(self, event: SecurityEvent) -> Dict:
        result = event.to_dict()
        result['severity'] = event.severity.value
        if event.resolved_at:
            result['resolved_at'] = event.resolved_at.isoformat()
        return result

    def _event_from_dict(self, data: Dict) -> SecurityEvent:
        resolved_at = None
        if data.get('resolved_at'):
            resolved_at = datetime.fromisoformat(data['resolved_at'])
        return SecurityEvent(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            event_type=data['event_type'],
            description=data['description'],
            severity=Severity(data['severity']),
            user_id=data.get('user_id'),
            ip_address=data.get('ip_address'),
            metadata=data.get('metadata', {}),
            resolved=data.get('resolved', False),
            resolved_by=data.get('resolved_by'),
            resolved_at=resolved_at
        )
