"""
Configuration management for the AI Business OS sync core
"""
from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    """Application settings"""

    # Application
    app_name: str = "AI Business OS"
    environment: str = "development"
    debug: bool = True
    log_level: str = "INFO"
    log_dir: str = "logs"
    log_to_file: bool = True

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Database
    database_url: str = "sqlite:///./bizos.db"

    # Scheduler (cron expressions, evaluated in scheduler_timezone)
    scheduler_enabled: bool = True
    scheduler_timezone: str = "UTC"
    sync_cron: str = "0 */6 * * *"  # every 6 hours
    anomaly_cron: str = "0 8 * * *"  # daily
    weekly_report_cron: str = "0 9 * * 1"  # Mondays

    # Sync runs
    sync_run_timeout_seconds: float = 3600.0  # wall-clock cap per connector run
    sync_max_parallel_connectors: int = 1  # 1 = sequential fan-out
    http_timeout_seconds: float = 30.0
    provider_max_concurrency: int = 4  # concurrent outbound requests per provider

    # Webhooks
    webhook_max_attempts: int = 3
    webhook_timestamp_tolerance_seconds: int = 300
    # A delivery stuck in processing longer than this is retried on redelivery
    webhook_processing_lease_seconds: int = 300
    # Fallback secrets when a connector row has no webhook_secret of its own
    webhook_secret_shopify: Optional[str] = None
    webhook_secret_stripe: Optional[str] = None
    webhook_secret_tiendanube: Optional[str] = None
    webhook_secret_meta_ads: Optional[str] = None
    webhook_secret_ga4: Optional[str] = None

    # Provider API versions
    shopify_api_version: str = "2024-01"
    meta_graph_version: str = "v18.0"
    tiendanube_user_agent: str = "AI Business OS/1.0"

    # OAuth apps (token refresh)
    meta_app_id: Optional[str] = None
    meta_app_secret: Optional[str] = None
    google_client_id: Optional[str] = None
    google_client_secret: Optional[str] = None

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"

    def webhook_secret_for(self, provider: str) -> Optional[str]:
        return getattr(self, f"webhook_secret_{provider}", None)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
