"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class LedgerConfig(BaseSettings):
    """Ledger core configuration"""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Database configuration
    database_url: str = "sqlite:///ledger.db"  # memory://, sqlite:///path or postgresql://...
    store_timeout_seconds: float = 5.0

    # Concurrency configuration
    lock_timeout_seconds: float = 5.0

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text

    # Business rules configuration
    default_account_type: str = "SAVINGS"
    account_number_length: int = 10
    record_receiver_entry: bool = False  # Also write a TRANSFER_CREDIT entry for the receiver

    # Identifier generation
    id_generation_max_attempts: int = 20
    id_generation_backoff_seconds: float = 0.005

    # Session tracking
    session_idle_minutes: int = 15
    session_remember_me_days: int = 7
    session_absolute_hours: int = 24
    session_max_tracked: int = 10000


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
