from decimal import Decimal
from functools import lru_cache
from typing import Any, List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_DEFAULT_CORS = ["http://localhost:3000", "http://localhost:3001"]


def _parse_cors_origins(v: Any) -> List[str]:
    try:
        if v is None or v == "":
            return _DEFAULT_CORS.copy()
        if isinstance(v, list):
            return [x for x in v if isinstance(x, str) and x.strip()]
        s = str(v).strip()
        if not s:
            return _DEFAULT_CORS.copy()
        if s.startswith("["):
            import json
            out = json.loads(s)
            return [x for x in out if isinstance(x, str) and x.strip()] or _DEFAULT_CORS.copy()
        return [x.strip() for x in s.split(",") if x.strip()] or _DEFAULT_CORS.copy()
    except ValueError:
        return _DEFAULT_CORS.copy()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # App
    env: str = Field(default="development", description="ENV")
    debug: bool = Field(default=False, description="DEBUG")
    app_base_url: str = Field(default="http://localhost:3001", alias="APP_BASE_URL")

    # Balance store: "mongo" (replica set required) or "memory" (single process)
    balance_store_backend: str = Field(default="mongo", alias="BALANCE_STORE_BACKEND")
    storage_timeout_seconds: float = Field(default=10.0, alias="STORAGE_TIMEOUT_SECONDS")

    # MongoDB
    mongodb_uri: str = Field(default="mongodb://localhost:27017/?replicaSet=rs0", alias="MONGODB_URI")
    mongodb_db_name: str = Field(default="verifynumber", alias="MONGODB_DB_NAME")
    mongodb_timeout_ms: int = Field(default=5000, alias="MONGODB_TIMEOUT_MS")

    # Redis (ARQ worker)
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")

    # Polar
    polar_access_token: str = Field(default="", alias="POLAR_ACCESS_TOKEN")
    polar_webhook_secret: str = Field(default="", alias="POLAR_WEBHOOK_SECRET")
    polar_product_id: str = Field(default="", alias="POLAR_PRODUCT_ID")
    polar_server: str | None = Field(default=None, alias="POLAR_SERVER")
    polar_timeout_seconds: float = Field(default=10.0, alias="POLAR_TIMEOUT_SECONDS")
    webhook_tolerance_seconds: int = Field(default=300, alias="WEBHOOK_TOLERANCE_SECONDS")

    # Checkout
    currency: str = Field(default="USD", alias="CURRENCY")
    checkout_min_custom_amount: Decimal = Field(default=Decimal("5"), alias="CHECKOUT_MIN_CUSTOM_AMOUNT")

    # Admin credit API; disabled when empty
    admin_api_token: str = Field(default="", alias="ADMIN_API_TOKEN")

    # Sentry
    sentry_dsn: str | None = Field(default=None, alias="SENTRY_DSN")

    # CORS: env as string, exposed as list
    cors_origins_raw: str = Field(
        default="http://localhost:3000,http://localhost:3001",
        alias="CORS_ORIGINS",
        description="Comma-separated or JSON list",
    )

    # Client reconciliation poller
    poll_interval_seconds: float = Field(default=5.0, alias="POLL_INTERVAL_SECONDS")
    poll_max_attempts: int = Field(default=24, alias="POLL_MAX_ATTEMPTS")

    # Worker
    ledger_audit_hour: int = Field(default=3, alias="LEDGER_AUDIT_HOUR")

    @property
    def cors_origins(self) -> List[str]:
        return _parse_cors_origins(getattr(self, "cors_origins_raw", None))

    @property
    def is_production(self) -> bool:
        return self.env.lower() == "production"

    @property
    def polar_configured(self) -> bool:
        return bool(self.polar_access_token)

    @property
    def polar_environment(self) -> str:
        """Polar server name: explicit POLAR_SERVER, else production only in production."""
        if self.polar_server:
            return self.polar_server
        return "production" if self.is_production else "sandbox"

    @property
    def polar_api_base(self) -> str:
        if self.polar_environment == "production":
            return "https://api.polar.sh"
        return "https://sandbox-api.polar.sh"


@lru_cache
def get_settings() -> Settings:
    return Settings()
