from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    database_url: str = "postgresql+psycopg://postgres:postgres@db:5432/yourobc"
    app_env: str = "dev"
    app_cors_origins: str = "*"
    auth_secret: str = "change-me-in-production"
    auth_cookie_name: str = "yourobc_session"
    auth_session_hours: float = 12
    # Accounting
    base_currency: str = "EUR"
    invoice_number_increment: int = 13
    invoice_number_format: str = "YYMM####"
    pod_invoice_tax_rate: float = 19
    default_payment_terms_days: int = 30
    dashboard_cache_hours: int = 24
    dashboard_expected_days: int = 30
    dashboard_forecast_days: int = 90
    max_collection_attempts: int = 10
    # Notification delivery
    accounting_notification_recipients: str | None = None  # comma-separated emails
    slack_webhook_url: str | None = None
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_user: str | None = None
    smtp_password: str | None = None


settings = Settings()
