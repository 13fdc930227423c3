"""
Option Monitor Configuration

Settings loaded from environment variables (or a .env file).
"""

from datetime import date
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Option Monitor settings."""

    # Service Configuration
    service_name: str = "option-monitor"
    port: int = 8010
    log_level: str = "INFO"

    # Stream Target
    stream_host: str = "localhost"
    stream_port: str = "8080"
    stream_use_insecure: bool = False

    # Subscription
    ticker: str = "AAPL"
    stream_date: Optional[date] = None  # Today when unset

    # Authentication
    session_token: Optional[str] = None

    # Alerts
    notifications_enabled: bool = True
    alert_webhook_url: Optional[str] = None
    sync_thresholds: bool = True  # Fetch server thresholds at startup and on ticker change

    # Transactions
    reauth_timeout: float = 3.0  # Wait for a new credential after a 401

    # Connection Timing (seconds)
    reconnect_delay: float = 5.0
    settle_delay: float = 0.5
    ping_interval: float = 30.0

    # Record Store
    max_records: Optional[int] = None

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


# Global settings instance
settings = Settings()
