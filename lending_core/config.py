"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class LendingConfig(BaseSettings):
    """Lending engine configuration"""

    # Database configuration
    database_url: str = "sqlite:///lending.db"  # sqlite:///path or memory://

    # Money configuration
    default_currency: str = "ETB"
    # Stored product/tax JSON may express percentages as points (2 == 2%)
    percent_values_as_points: bool = False

    # Business rules configuration
    default_npl_threshold_days: int = 60

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    class Config:
        env_prefix = "LENDING_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = LendingConfig()


def get_config() -> LendingConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> LendingConfig:
    """Reload configuration from environment"""
    global config
    config = LendingConfig()
    return config
