"""
Authentication and authorization dependencies
"""

from datetime import datetime, timezone, timedelta
from decimal import Decimal
from typing import Optional

import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from ..storage import create_storage
from ..audit import AuditTrail
from ..accounts import AccountManager
from ..customers import CustomerManager
from ..currency import Currency
from ..deposits import DepositManager
from ..identity import CurrentIdentity, IdentityCache, Role
from ..loans import LoanManager
from ..reporting import ReportingEngine
from ..settings import SettingsManager, SecurityEventManager
from ..statements import StatementService
from ..transactions import TransactionLog
from ..transfers import TransferExecutor
from ..config import BankConfig, get_config
from ..logging_config import get_logger


logger = get_logger("retail_banking.api")

security = HTTPBearer(auto_error=False)


class BankingSystem:
    """Retail banking system with all components initialized"""

    def __init__(self, config: Optional[BankConfig] = None):
        self.config = config or get_config()
        currency = Currency[self.config.currency]

        self.storage = create_storage(self.config.storage_backend, self.config.sqlite_path)

        self.audit_trail = AuditTrail(self.storage)
        self.settings = SettingsManager(self.storage, self.audit_trail)
        self.security_events = SecurityEventManager(self.storage, self.audit_trail)
        self.customer_manager = CustomerManager(
            self.storage, self.audit_trail,
            min_password_length=int(self.settings.get("min_password_length"))
        )
        self.identity_cache = IdentityCache(
            self.customer_manager.resolve_identity,
            ttl=timedelta(hours=self.config.identity_cache_ttl_hours)
        )
        self.account_manager = AccountManager(self.storage, self.audit_trail, currency)
        self.transaction_log = TransactionLog(self.storage, self.audit_trail)
        self.transfer_executor = TransferExecutor(
            self.storage, self.account_manager, self.transaction_log, self.audit_trail,
            security_events=self.security_events,
            currency=currency,
            max_cas_retries=self.config.transfer_max_cas_retries,
            reconciliation_grace=timedelta(seconds=self.config.reconciliation_grace_seconds)
        )
        self.deposit_manager = DepositManager(
            self.storage, self.account_manager, self.transaction_log, self.audit_trail,
            locks=self.transfer_executor.locks,
            currency=currency,
            max_cas_retries=self.config.transfer_max_cas_retries,
            security_events=self.security_events
        )
        self.loan_manager = LoanManager(
            self.storage, self.audit_trail,
            settings=self.settings,
            annual_interest_rate=Decimal(self.config.loan_interest_rate),
            min_amount=Decimal(self.config.min_loan_amount),
            max_amount=Decimal(self.config.max_loan_amount),
            min_term_months=self.config.min_loan_term_months,
            max_term_months=self.config.max_loan_term_months,
            currency=currency
        )
        self.statement_service = StatementService(self.account_manager, self.transaction_log)
        self.reporting_engine = ReportingEngine(
            self.customer_manager, self.account_manager, self.loan_manager,
            self.deposit_manager, self.transaction_log, currency
        )
        self._ensure_admin()

    def _ensure_admin(self) -> None:
        email = self.config.admin_email
        if not email or not self.config.admin_password:
            return
        if self.customer_manager.get_customer_by_email(email):
            return
        admin = self.customer_manager.register_customer(
            first_name="Bank",
            last_name="Administrator",
            email=email,
            password=self.config.admin_password,
            role=Role.ADMIN
        )
        logger.info(f"Created initial admin account {admin.id}")

    def close(self) -> None:
        self.storage.close()


# Global banking system instance, built on first use
banking_system: Optional[BankingSystem] = None


def get_banking_system() -> BankingSystem:
    global banking_system
    if banking_system is None:
        banking_system = BankingSystem()
    return banking_system


def create_access_token(customer_id: str, config: BankConfig) -> dict:
    """Issue a signed bearer token for a customer"""
    now = datetime.now(timezone.utc)
    expires_at = now + timedelta(hours=config.jwt_expiry_hours)
    token = jwt.encode(
        {"sub": customer_id, "iat": now, "exp": expires_at},
        config.jwt_secret,
        algorithm=config.jwt_algorithm
    )
    return {
        "access_token": token,
        "token_type": "bearer",
        "expires_at": expires_at.isoformat()
    }


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    system: BankingSystem = Depends(get_banking_system)
) -> str:
    """Dependency that validates the JWT and returns the customer id"""
    if not credentials:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        payload = jwt.decode(
            credentials.credentials,
            system.config.jwt_secret,
            algorithms=[system.config.jwt_algorithm]
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token")
    return user_id


def get_current_identity(
    user_id: str = Depends(get_current_user),
    system: BankingSystem = Depends(get_banking_system)
) -> CurrentIdentity:
    """Resolve the caller through the identity cache"""
    identity = system.identity_cache.get(user_id)
    if identity is None:
        raise HTTPException(status_code=401, detail="Unknown user")
    return identity


def require_admin(identity: CurrentIdentity = Depends(get_current_identity)) -> CurrentIdentity:
    if not identity.is_admin:
        raise HTTPException(status_code=403, detail="Admin role required")
    return identity
