"""
Application configuration.

Settings are read once from environment variables.  A ``.env`` file at the
project root is loaded first so local development does not need exported
variables.  The module-level ``settings`` instance is imported elsewhere.
"""

from __future__ import annotations

import os
import warnings
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).resolve().parent.parent

_env_path = PROJECT_ROOT / ".env"
if _env_path.exists():
    load_dotenv(dotenv_path=_env_path)


class Settings:
    """Runtime settings for the order service."""

    # Any SQLAlchemy URL.  SQLite by default; "sqlite://" keeps everything in memory.
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./pharmacy_orders.db")

    # development, staging, production
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Money
    CURRENCY: str = os.getenv("CURRENCY", "KES")

    # Payment rails.  Only the simulated gateway ships with the service.
    PAYMENT_GATEWAY: str = os.getenv("PAYMENT_GATEWAY", "simulated")
    PAYMENT_SIMULATED_DELAY: float = float(os.getenv("PAYMENT_SIMULATED_DELAY", "0"))
    PAYMENT_POLL_ATTEMPTS: int = int(os.getenv("PAYMENT_POLL_ATTEMPTS", "5"))
    PAYMENT_POLL_INTERVAL: float = float(os.getenv("PAYMENT_POLL_INTERVAL", "10"))
    PAYMENT_POLL_BACKOFF: float = float(os.getenv("PAYMENT_POLL_BACKOFF", "2.0"))

    # Notifications
    NOTIFICATION_SUCCESS_RATE: float = float(os.getenv("NOTIFICATION_SUCCESS_RATE", "0.9"))

    # Optional JSON-lines mirror of the audit trail
    AUDIT_LOG_FILE: Optional[str] = os.getenv("AUDIT_LOG_FILE") or None

    def validate(self) -> None:
        """Reject settings that would make the service misbehave."""
        if not 0.0 <= self.NOTIFICATION_SUCCESS_RATE <= 1.0:
            raise ValueError("NOTIFICATION_SUCCESS_RATE must be between 0 and 1")
        if self.PAYMENT_POLL_ATTEMPTS < 1:
            raise ValueError("PAYMENT_POLL_ATTEMPTS must be at least 1")
        if self.ENVIRONMENT in ("production", "prod") and self.DATABASE_URL.startswith("sqlite"):
            warnings.warn("SQLite is configured in production; set DATABASE_URL to a server database")


settings = Settings()
settings.validate()
