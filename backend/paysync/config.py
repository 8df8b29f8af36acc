"""
PaySync Configuration Module

Loads environment variables for backend configuration.
"""
from pydantic_settings import BaseSettings
from typing import Literal, Optional


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Notes:
    - Public API keys are parsed once at startup (label:key[:secret], comma separated)
    - Stripe is optional; without a secret key the mock gateway is used
    - Reconciliation timings are in minutes, gateway timeout in seconds
    """

    # Public API request signing
    public_api_keys: str = ""
    public_api_timestamp_window_seconds: int = 300
    allow_insecure_public_api: bool = False

    # Payment gateway (Stripe)
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    stripe_webhook_tolerance_seconds: int = 300
    gateway_timeout_seconds: float = 10.0

    # Reconciliation sweep
    reconciliation_enabled: bool = True
    reconciliation_interval_minutes: int = 5
    reconciliation_stale_after_minutes: int = 5

    # Admin identity provider (HS256 bearer tokens)
    admin_jwt_secret: str = ""
    admin_jwt_audience: Optional[str] = None
    admin_jwt_leeway_seconds: int = 10
    admin_subjects: str = ""

    # Demo Configuration
    demo_mode: bool = False
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Database
    database_url: str = "sqlite+aiosqlite:///./paysync.db"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    class Config:
        env_file = ".env"
        case_sensitive = False

    @property
    def stripe_configured(self) -> bool:
        """True when a usable Stripe secret key is set (not the docs placeholder)."""
        return bool(self.stripe_secret_key) and not self.stripe_secret_key.startswith("sk_test_...")


# Global settings instance
settings = Settings()
