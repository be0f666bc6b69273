import json
import os

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    app_name: str = "GiftCircle API"
    backend_url: str = "http://localhost:8000"
    frontend_url: str = "http://localhost:3000"
    environment: str = "local"
    backend_cors_origins_raw: str = ""  # Comma-separated or JSON array

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "allow",
    }

    @property
    def backend_cors_origins(self) -> list[str]:
        """Parse CORS origins from raw string."""
        raw = os.getenv("BACKEND_CORS_ORIGINS", self.backend_cors_origins_raw).strip()
        if not raw:
            return ["http://localhost:3000", "http://127.0.0.1:3000"]
        if raw.startswith("["):
            try:
                parsed = json.loads(raw)
            except ValueError:
                parsed = None
            if isinstance(parsed, list):
                return [str(item).strip() for item in parsed if str(item).strip()]
        return [item.strip() for item in raw.split(",") if item.strip()]

    # Database: sqlite+aiosqlite:///./giftcircle.db (dev) | postgresql+asyncpg://... (prod)
    database_dsn: str = "sqlite+aiosqlite:///./giftcircle.db"
    db_pool_size: int = 5
    db_max_overflow: int = 10
    db_pool_recycle: int = 1800
    db_pool_timeout: int = 30

    access_token_expire_minutes: int = 60 * 24 * 7
    refresh_token_expire_minutes: int = 60 * 24 * 30
    # SECURITY: override via JWT_SECRET_KEY env var; app refuses to start with default outside local
    jwt_secret_key: str = "CHANGE_ME"
    jwt_algorithm: str = "HS256"

    rate_limit_enabled: bool = True
    rate_limit_requests: int = 10
    rate_limit_window_seconds: int = 60
    rate_limit_login_requests: int = 5
    rate_limit_search_requests: int = 30

    log_level: str = "INFO"
    log_file: str = ""

    # Realtime relay
    realtime_redis_enabled: bool = False
    redis_dsn: str = "redis://localhost:6379/0"
    realtime_channel: str = "giftcircle:realtime"
    ws_ping_interval: int = 30
    ws_ping_timeout: int = 60
    realtime_retry_min_seconds: float = 0.5
    realtime_retry_max_seconds: float = 30.0

    # Domain
    deleted_retention_days: int = 7
    upcoming_gift_window_days: int = 60
    default_currency: str = "USD"
    user_search_limit: int = 10

    # Exchange rates
    exchange_rate_api_url: str = "https://api.exchangerate-api.com/v4/latest"
    exchange_rate_cache_hours: int = 24
    exchange_rate_timeout_seconds: float = 10.0

    def validate_secrets(self) -> None:
        """Refuse to start with insecure defaults."""
        if self.jwt_secret_key == "CHANGE_ME":
            raise RuntimeError(
                "JWT_SECRET_KEY is still the default 'CHANGE_ME'. "
                "Set a strong random secret via the JWT_SECRET_KEY environment variable."
            )
        if len(self.jwt_secret_key) < 32:
            raise RuntimeError(
                f"JWT_SECRET_KEY is too short ({len(self.jwt_secret_key)} chars). "
                "Minimum 32 characters required."
            )


settings = Settings()
