"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class ExchangeConfig(BaseSettings):
    """Currency exchange shop configuration"""
    
    # Database configuration
    database_url: str = "sqlite:///exchange.db"  # memory://, sqlite:///path or postgresql://...
    
    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090
    cors_origins: str = "*"  # Comma separated
    
    # Security configuration
    auth_enabled: bool = True
    jwt_secret: str = "change-me-in-production"
    jwt_expiry_hours: int = 24
    jwt_algorithm: str = "HS256"
    password_min_length: int = 8
    
    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout
    
    # Business rules configuration
    default_rate_to_usd: str = "1.0"
    default_rate_to_lyd: str = "5.0"
    default_buy_price: str = "5.0"
    default_sell_price: str = "5.5"
    validation_threshold: str = "10000"
    recent_transactions_window: int = 30
    
    # Feature flags
    enable_audit_logging: bool = True
    seed_currency_types: bool = True
    
    class Config:
        env_prefix = "EXCHANGE_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = ExchangeConfig()


def get_config() -> ExchangeConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> ExchangeConfig:
    """Reload configuration from environment"""
    global config
    config = ExchangeConfig()
    return config
