"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class LedgerConfig(BaseSettings):
    """Transfer ledger configuration"""

    # Storage configuration
    storage_backend: str = "memory"  # memory or sqlite
    database_path: str = "transfer_ledger.db"
    sqlite_busy_timeout_seconds: float = 5.0  # Bounds how long a commit waits for the write lock

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    # Business rules configuration
    opening_balance: str = "100000.00"
    minimum_transfer_amount: str = "0.01"
    max_beneficiaries: int = 10
    max_description_length: int = 100
    default_transfer_description: str = "Money transfer"
    transaction_history_limit: int = 50
    account_number_attempts: int = 20

    # Feature flags
    enable_audit_logging: bool = True
    enable_domain_events: bool = True

    class Config:
        env_prefix = "LEDGER_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = LedgerConfig()


def get_config() -> LedgerConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> LedgerConfig:
    """Reload configuration from environment"""
    global config
    config = LedgerConfig()
    return config
