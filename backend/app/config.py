"""Configuration settings for the ErrandWork backend."""

from functools import lru_cache

from pydantic_settings import BaseSettings

from errandwork.config import MarketplaceConfig


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # Supabase
    supabase_url: str
    supabase_secret_key: str | None = None  # Backend/admin access
    supabase_service_role_key: str | None = None  # Legacy name for the same key

    # JWT
    jwt_secret_key: str  # Required - no default for security
    jwt_algorithm: str = "HS256"
    jwt_expire_minutes: int = 60 * 24 * 7  # 1 week

    # Maintenance: bcrypt hash of the key the scheduler sends as X-Cron-Key
    cron_key_hash: str | None = None

    # Paystack
    paystack_secret_key: str | None = None
    paystack_base_url: str = "https://api.paystack.co"
    paystack_callback_url: str = "http://localhost:3000/wallet/callback"

    # Marketplace policy
    acceptance_window_hours: float = 1.0
    worker_cancel_wait_hours: float = 24.0
    default_job_expiry_days: int = 30
    sweep_batch_limit: int = 500
    platform_fee_percent: float = 5.0
    platform_account_id: str = "platform"

    # App
    debug: bool = False
    log_level: str = "INFO"
    # CORS: Allowed origins for cross-origin requests
    cors_origins: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # Ignore extra env vars not in model

    def marketplace_config(self) -> MarketplaceConfig:
        return MarketplaceConfig(
            acceptance_window_hours=self.acceptance_window_hours,
            worker_cancel_wait_hours=self.worker_cancel_wait_hours,
            default_job_expiry_days=self.default_job_expiry_days,
            sweep_batch_limit=self.sweep_batch_limit,
            platform_fee_percent=self.platform_fee_percent,
            platform_account_id=self.platform_account_id,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
