"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Rafflio application settings."""

    # App
    app_env: str = "development"
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    app_debug: bool = True
    app_base_url: str = "http://localhost:8000"
    log_level: str = "INFO"
    log_format: str = "text"  # "text" or "json"

    # Oracle Database
    oracle_dsn: str = "localhost:1521/FREEPDB1"
    oracle_user: str = "rafflio"
    oracle_password: str = "Rafflio_Dev_2026!"
    oracle_pool_min: int = 2
    oracle_pool_max: int = 10
    oracle_pool_increment: int = 1

    # JWT
    jwt_algorithm: str = "HS256"
    jwt_access_token_expire_minutes: int = 60
    jwt_secret_key: str = "5b0e1c7de4f2a9384c61a0b7f3e2d915aa"

    # CORS
    cors_origins: str = "*"  # Comma-separated origins; "*" for dev only

    # Rate Limiting (requests per minute)
    rate_limit_anonymous: int = 30
    rate_limit_user: int = 100
    rate_limit_admin: int = 500
    rate_limit_checkout: int = 10  # per client address

    # MercadoPago (empty access token = stub mode)
    mercadopago_access_token: str = ""
    mercadopago_timeout_seconds: int = 5
    currency_id: str = "ARS"
    statement_descriptor: str = "RAFFLIO"
    preference_expiration_hours: int = 24

    # Payment verification
    payment_verification_attempts: int = 3
    payment_retry_seconds: int = 10

    # Email
    email_from: str = "no-reply@rafflio.com"
    email_dev_mode: bool = True

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def is_testing(self) -> bool:
        return self.app_env == "testing"

    @property
    def cors_origin_list(self) -> list[str]:
        """Parse comma-separated CORS origins into a list."""
        if self.cors_origins == "*":
            return ["*"]
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def webhook_url(self) -> str:
        return f"{self.app_base_url.rstrip('/')}/api/payment/webhook"


def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
