"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from decimal import Decimal
from typing import Optional, Tuple

from pydantic_settings import BaseSettings, SettingsConfigDict


class LedgerConfig(BaseSettings):
    """Accounting ledger configuration"""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Storage configuration
    database_url: str = "sqlite:///:memory:"  # memory:// selects InMemoryStorage

    # Chart of accounts
    account_code_pattern: str = r"^\d{4}$"
    seed_default_chart: bool = False

    # Posting rules
    balance_tolerance: str = "0.01"
    rounding_account: str = "7101"  # takes accepted residuals; empty requires exact balance

    # Reporting
    cost_account_prefixes: str = "5"  # comma separated code prefixes
    verify_rollup_on_read: bool = False

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stderr

    # Feature flags
    enable_audit_logging: bool = True

    @property
    def tolerance(self) -> Decimal:
        return Decimal(self.balance_tolerance)

    @property
    def cost_prefixes(self) -> Tuple[str, ...]:
        return tuple(p.strip() for p in self.cost_account_prefixes.split(",") if p.strip())


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
