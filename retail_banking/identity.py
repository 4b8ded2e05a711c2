"""
Identity Module

Resolves the caller's identity (id, role, approval status) and caches the
result per user with an explicit time-to-live. Approval and role changes must
expire the cached entry; nothing refreshes it implicitly.
"""

import threading
from dataclasses import dataclass
from datetime import datetime, timezone, timedelta
from enum import Enum
from typing import Callable, Dict, Optional, Tuple

from .errors import NotAuthorized
from .logging_config import get_logger


logger = get_logger("retail_banking.identity")


class Role(Enum):
    """Caller role"""
    CUSTOMER = "customer"
    ADMIN = "admin"


class ApprovalStatus(Enum):
    """Customer approval status, decided by an admin"""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass(frozen=True)
class CurrentIdentity:
    """The authenticated caller as seen by the business components"""
    id: str
    role: Role
    approval_status: ApprovalStatus

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    @property
    def is_approved(self) -> bool:
        return self.approval_status == ApprovalStatus.APPROVED

    @property
    def can_transfer(self) -> bool:
        """Approved customers and admins may move money"""
        return self.is_admin or self.is_approved

    def require_admin(self) -> None:
        if not self.is_admin:
            raise NotAuthorized("Admin role required")

    def require_approved(self) -> None:
        if not self.can_transfer:
            raise NotAuthorized(
                f"Customer approval status is {self.approval_status.value}"
            )


IdentityResolver = Callable[[str], Optional[CurrentIdentity]]


class IdentityCache:
    """
    Per-user identity cache with a fixed time-to-live.

    Args:
        resolver: Loads a fresh identity for a user id (None when unknown)
        ttl: How long a resolved identity is served from cache
        clock: Returns the current UTC time (overridable in tests)
    """

    def __init__(
        self,
        resolver: IdentityResolver,
        ttl: timedelta = timedelta(hours=24),
        clock: Optional[Callable[[], datetime]] = None
    ):
        self._resolver = resolver
        self._ttl = ttl
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._entries: Dict[str, Tuple[CurrentIdentity, datetime]] = {}
        self._lock = threading.Lock()

    def get(self, user_id: str) -> Optional[CurrentIdentity]:
        """Return the cached identity, resolving it when missing or stale"""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(user_id)
            if entry and now - entry[1] < self._ttl:
                return entry[0]
        return self.refresh(user_id)

    def refresh(self, user_id: str) -> Optional[CurrentIdentity]:
        """Resolve the identity now and replace any cached entry"""
        identity = self._resolver(user_id)
        with self._lock:
            if identity is None:
                self._entries.pop(user_id, None)
            else:
                self._entries[user_id] = (identity, self._clock())
        logger.debug(f"Identity resolved for {user_id}: {identity}")
        return identity

    def expire(self, user_id: Optional[str] = None) -> None:
        """Drop one cached identity, or all of them"""
        with self._lock:
            if user_id is None:
                self._entries.clear()
            else:
                self._entries.pop(user_id, None)
