"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class LedgerConfig(BaseSettings):
    """Bullion ledger configuration"""
    
    model_config = SettingsConfigDict(
        env_prefix="BULLION_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )
    
    # Storage configuration
    database_url: str = "sqlite:///bullion_ledger.db"  # or memory://
    
    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8095
    
    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout
    
    # Ledger configuration
    transaction_id_prefix: str = "TXN"
    transaction_id_width: int = 8
    balance_update_max_retries: int = 5
    weight_decimal_places: int = 4
    
    # PDC maturity sweep
    maturity_actor: str = "system"
    
    # Feature flags
    enable_audit_logging: bool = True


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
