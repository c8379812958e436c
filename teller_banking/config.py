"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class TellerConfig(BaseSettings):
    """Teller banking back-office configuration"""

    # Database configuration
    database_url: str = "sqlite:///teller.db"  # memory:// for an in-process store

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 5100
    api_prefix: str = "/api/v1"

    # Security configuration
    jwt_secret: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"
    session_token_ttl_minutes: int = 24 * 60
    reset_token_ttl_minutes: int = 15
    expose_reset_token: bool = True  # No mailer; the reset token is returned to the caller

    # Bootstrap admin, created on startup when both are set
    bootstrap_admin_email: Optional[str] = None
    bootstrap_admin_password: Optional[str] = None

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text

    # Business rules configuration
    balance_update_attempts: int = 5
    account_number_attempts: int = 10

    class Config:
        env_prefix = "TELLER_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = TellerConfig()


def get_config() -> TellerConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> TellerConfig:
    """Reload configuration from environment"""
    global config
    config = TellerConfig()
    return config
