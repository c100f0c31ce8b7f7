"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class LedgerConfig(BaseSettings):
    """Finance ledger configuration"""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Database configuration
    database_url: str = "sqlite:///ledger.db"  # memory://, sqlite:///path, postgresql://...
    lock_timeout_seconds: float = 30.0  # Upper bound on row lock waits

    # Document numbering
    document_number_brand: str = ""  # Optional leading segment, e.g. "WIF" -> WIF-INV-2026-001
    document_number_padding: int = 3

    # Ledger policy
    # Statements of payment post total_deducted; when it is missing this
    # decides between falling back to the nominal amount and NullAmountError
    allow_total_deducted_fallback: bool = True

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text

    # Feature flags
    enable_audit_logging: bool = True
    enable_domain_events: bool = True

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090


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
