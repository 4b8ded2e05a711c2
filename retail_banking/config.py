"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class BankConfig(BaseSettings):
    """Retail banking service configuration"""

    # Storage configuration
    storage_backend: str = "sqlite"  # sqlite or memory
    sqlite_path: str = "retail_banking.db"

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090

    # Security configuration
    jwt_secret: str = "change-me-in-production"
    jwt_expiry_hours: int = 24
    jwt_algorithm: str = "HS256"

    # Initial admin account, created on startup when both are set
    admin_email: Optional[str] = None
    admin_password: Optional[str] = None

    # Identity resolution is cached per user and refreshed explicitly
    identity_cache_ttl_hours: int = 24

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    # Business rules configuration
    currency: str = "XAF"
    loan_interest_rate: str = "5.99"  # Annual percentage
    min_loan_amount: str = "1000"
    max_loan_amount: str = "200000000"
    min_loan_term_months: int = 12
    max_loan_term_months: int = 84

    # Transfer saga configuration
    transfer_max_cas_retries: int = 5
    reconciliation_grace_seconds: int = 60

    class Config:
        env_prefix = "RETAIL_BANK_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = BankConfig()


def get_config() -> BankConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> BankConfig:
    """Reload configuration from environment"""
    global config
    config = BankConfig()
    return config
