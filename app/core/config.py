from decimal import Decimal
from functools import lru_cache
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    # ─────────── APP ───────────
    app_name: str = "Freight Settlement Engine"
    environment: str = "dev"
    log_level: str = "INFO"

    # ─────────── API ───────────
    api_prefix: str = "/api/v1"
    request_id_header: str = "X-Request-Id"

    # ─────────── DATABASE ───────────
    database_url: str
    db_echo: bool = False
    db_pool_size: int = 10

    # ─────────── JWT / AUTH ───────────
    jwt_secret_key: str
    jwt_algorithm: str = "HS256"
    jwt_access_token_minutes: int = 1440  # 24 hours
    jwt_issuer: str = "freight-users"

    # ─────────── MARKETPLACE ───────────
    currency: str = "NGN"
    max_bid_markup: Decimal = Decimal("200000")
    min_withdrawal_amount: Decimal = Decimal("100")

    # ─────────── PAYOUT PROVIDER ───────────
    payout_base_url: str = "https://api.paystack.co"
    payout_client_id: Optional[str] = None
    payout_client_secret: Optional[str] = None
    payout_token_refresh_margin_seconds: int = 60
    payout_timeout_seconds: float = 15.0

    # ─────────── FUNDING WEBHOOK ───────────
    payment_webhook_secret: Optional[str] = None
    payment_webhook_signature_header: str = "X-Paystack-Signature"

    @field_validator("database_url")
    @classmethod
    def _use_psycopg_driver(cls, v: str) -> str:
        # psycopg 3 is the installed driver; bare postgres URLs would load psycopg2
        for prefix in ("postgresql://", "postgres://"):
            if v.startswith(prefix):
                return "postgresql+psycopg://" + v[len(prefix):]
        return v


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
