"""
Tests for caller identities and the identity cache
"""

import pytest
from datetime import datetime, timezone, timedelta

from retail_banking.errors import NotAuthorized
from retail_banking.identity import (
    IdentityCache, CurrentIdentity, Role, ApprovalStatus
)


class FakeClock:

    def __init__(self):
        self.now = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class TestCurrentIdentity:

    def test_pending_customer(self):
        identity = CurrentIdentity("c1", Role.CUSTOMER, ApprovalStatus.PENDING)
        assert not identity.can_transfer
        with pytest.raises(NotAuthorized):
            identity.require_approved()
        with pytest.raises(NotAuthorized):
            identity.require_admin()

    def test_approved_customer(self):
        identity = CurrentIdentity("c1", Role.CUSTOMER, ApprovalStatus.APPROVED)
        assert identity.can_transfer
        identity.require_approved()

    def test_admin_can_transfer_regardless_of_status(self):
        identity = CurrentIdentity("a1", Role.ADMIN, ApprovalStatus.PENDING)
        assert identity.is_admin
        assert identity.can_transfer
        identity.require_admin()


class TestIdentityCache:

    def setup_method(self):
        self.clock = FakeClock()
        self.status = {"c1": ApprovalStatus.PENDING}
        self.calls = 0
        self.cache = IdentityCache(self.resolve, ttl=timedelta(hours=24), clock=self.clock)

    def resolve(self, user_id):
        self.calls += 1
        if user_id not in self.status:
            return None
        return CurrentIdentity(user_id, Role.CUSTOMER, self.status[user_id])

    def test_cached_within_ttl(self):
        assert self.cache.get("c1").approval_status == ApprovalStatus.PENDING
        self.status["c1"] = ApprovalStatus.APPROVED
        self.clock.advance(hours=23)
        assert self.cache.get("c1").approval_status == ApprovalStatus.PENDING
        assert self.calls == 1

    def test_resolved_again_after_ttl(self):
        self.cache.get("c1")
        self.status["c1"] = ApprovalStatus.APPROVED
        self.clock.advance(hours=24)
        assert self.cache.get("c1").approval_status == ApprovalStatus.APPROVED
        assert self.calls == 2

    def test_expire_one_user(self):
        self.cache.get("c1")
        self.status["c1"] = ApprovalStatus.APPROVED
        self.cache.expire("c1")
        assert self.cache.get("c1").is_approved

    def test_expire_all(self):
        self.status["c2"] = ApprovalStatus.PENDING
        self.cache.get("c1")
        self.cache.get("c2")
        self.cache.expire()
        self.cache.get("c1")
        self.cache.get("c2")
        assert self.calls == 4

    def test_refresh_bypasses_cache(self):
        self.cache.get("c1")
        self.status["c1"] = ApprovalStatus.APPROVED
        assert self.cache.refresh("c1").is_approved
        assert self.cache.get("c1").is_approved
        assert self.calls == 2

    def test_unknown_user_is_not_cached(self):
        assert self.cache.get("ghost") is None
        assert self.cache.get("ghost") is None
        assert self.calls == 2
