from decimal import Decimal
from functools import lru_cache
from typing import Any, List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_DEFAULT_CORS = ["http://localhost:3000", "http://localhost:5173"]


def _parse_cors_origins(v: Any) -> List[str]:
    if v is None or v == "":
        return _DEFAULT_CORS.copy()
    if isinstance(v, list):
        return [x for x in v if isinstance(x, str) and x.strip()]
    s = str(v).strip()
    if s.startswith("["):
        import json
        try:
            out = json.loads(s)
        except ValueError:
            return _DEFAULT_CORS.copy()
        return [x for x in out if isinstance(x, str) and x.strip()] or _DEFAULT_CORS.copy()
    return [x.strip() for x in s.split(",") if x.strip()] or _DEFAULT_CORS.copy()


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
    secret_key: str = Field(default="change-me-in-production-min-32-chars")

    # MongoDB
    mongodb_uri: str = Field(default="mongodb://localhost:27017", alias="MONGODB_URI")
    mongodb_db_name: str = Field(default="betdesk", alias="MONGODB_DB_NAME")
    mongodb_timeout_ms: int = Field(default=5000, alias="MONGODB_TIMEOUT_MS")

    # Redis (background settlement jobs)
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")

    # Stripe
    stripe_secret_key: str = Field(default="", alias="STRIPE_SECRET_KEY")
    stripe_publishable_key: str = Field(default="", alias="STRIPE_PUBLISHABLE_KEY")
    stripe_webhook_secret: str = Field(default="", alias="STRIPE_WEBHOOK_SECRET")
    stripe_currency: str = Field(default="crc", alias="STRIPE_CURRENCY")
    checkout_return_path: str = "/payment/checkout/success?session_id={CHECKOUT_SESSION_ID}"

    # Dev/admin free purchases
    payment_enable_bypass: bool = Field(default=False, alias="PAYMENT_ENABLE_BYPASS")
    payment_bypass_code: str = Field(default="", alias="PAYMENT_BYPASS_CODE")

    # Sentry
    sentry_dsn: str | None = Field(default=None, alias="SENTRY_DSN")

    # CORS: env as string, exposed as list
    cors_origins_raw: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        alias="CORS_ORIGINS",
        description="Comma-separated or JSON list",
    )

    @property
    def cors_origins(self) -> List[str]:
        return _parse_cors_origins(getattr(self, "cors_origins_raw", None))

    @property
    def is_development(self) -> bool:
        return self.env.lower() == "development"

    # Betting limits
    min_stake: Decimal = Decimal("1.00")
    bet_cancel_cutoff_minutes: int = 5

    # Per-bet maximum and daily stake total per role (CRC); "user" is the regular tier
    max_stake_vip: Decimal = Decimal("26000000")
    max_stake_premium: Decimal = Decimal("10400000")
    max_stake_user: Decimal = Decimal("2600000")
    max_stake_default: Decimal = Decimal("520000")
    daily_stake_limit_vip: Decimal = Decimal("52000000")
    daily_stake_limit_premium: Decimal = Decimal("26000000")
    daily_stake_limit_user: Decimal = Decimal("5200000")
    daily_stake_limit_default: Decimal = Decimal("2600000")

    # Odds history window returned when no range is given
    odds_history_days: int = 7

    # Minimum withdrawal per role; anything not listed uses the default
    min_withdrawal_default: Decimal = Decimal("50")
    min_withdrawal_premium: Decimal = Decimal("25")
    min_withdrawal_vip: Decimal = Decimal("10")


@lru_cache
def get_settings() -> Settings:
    return Settings()
