from functools import lru_cache
from typing import Any, List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_DEFAULT_CURRENCIES = ["INR", "USD", "EUR"]


def _parse_list(v: Any, default: List[str]) -> List[str]:
    try:
        if v is None or v == "":
            return default.copy()
        if isinstance(v, list):
            return [x.strip().upper() for x in v if isinstance(x, str) and x.strip()]
        s = str(v).strip()
        if s.startswith("["):
            import orjson
            out = orjson.loads(s)
            return [x.strip().upper() for x in out if isinstance(x, str) and x.strip()] or default.copy()
        return [x.strip().upper() for x in s.split(",") if x.strip()] or default.copy()
    except Exception:
        return default.copy()


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

    # Persistence: "mongo" or "memory"
    payment_store_backend: str = Field(default="mongo", alias="PAYMENT_STORE_BACKEND")
    mongodb_uri: str = Field(default="mongodb://localhost:27017", alias="MONGODB_URI")
    mongodb_db_name: str = Field(default="consultpay", alias="MONGODB_DB_NAME")

    # Redis (order locks, arq)
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")
    order_lock_timeout_seconds: float = Field(default=30.0, alias="ORDER_LOCK_TIMEOUT_SECONDS")

    # Razorpay
    razorpay_key_id: str = Field(default="", alias="RAZORPAY_KEY_ID")
    razorpay_key_secret: str = Field(default="", alias="RAZORPAY_KEY_SECRET")
    razorpay_webhook_secret: str = Field(default="", alias="RAZORPAY_WEBHOOK_SECRET")

    # Gateway call policy
    gateway_max_attempts: int = Field(default=3, alias="GATEWAY_MAX_ATTEMPTS")
    gateway_backoff_base_seconds: float = Field(default=0.5, alias="GATEWAY_BACKOFF_BASE_SECONDS")
    gateway_timeout_seconds: float = Field(default=10.0, alias="GATEWAY_TIMEOUT_SECONDS")

    # Orders (amounts in minor currency units, e.g. paise)
    default_currency: str = Field(default="INR", alias="DEFAULT_CURRENCY")
    supported_currencies_raw: str = Field(
        default="INR,USD,EUR",
        alias="SUPPORTED_CURRENCIES",
        description="Comma-separated or JSON list",
    )
    min_order_amount: int = Field(default=100, alias="MIN_ORDER_AMOUNT")
    max_order_amount: int = Field(default=50_000_000, alias="MAX_ORDER_AMOUNT")
    daily_limit_amount: int = Field(default=100_000_000, alias="DAILY_LIMIT_AMOUNT")
    idempotency_window_seconds: int = Field(default=15 * 60, alias="IDEMPOTENCY_WINDOW_SECONDS")

    @property
    def supported_currencies(self) -> List[str]:
        return _parse_list(getattr(self, "supported_currencies_raw", None), _DEFAULT_CURRENCIES)

    # Refunds
    refund_window_days: int = Field(default=180, alias="REFUND_WINDOW_DAYS")

    # Webhooks
    webhook_dedup_ttl_seconds: int = Field(default=24 * 3600, alias="WEBHOOK_DEDUP_TTL_SECONDS")

    # Analytics policy: REFUNDED orders were once captured, count them as successful
    analytics_count_refunded_as_success: bool = Field(
        default=True, alias="ANALYTICS_COUNT_REFUNDED_AS_SUCCESS"
    )

    # Reconciliation sweep
    reconcile_sweep_batch: int = Field(default=50, alias="RECONCILE_SWEEP_BATCH")
    reconcile_sweep_min_age_seconds: int = Field(default=120, alias="RECONCILE_SWEEP_MIN_AGE_SECONDS")

    # Sentry
    sentry_dsn: str | None = Field(default=None, alias="SENTRY_DSN")


@lru_cache
def get_settings() -> Settings:
    return Settings()
