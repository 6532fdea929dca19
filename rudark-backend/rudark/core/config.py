import json
from typing import List, Union
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Rudark Backend"
    env: str = "dev"
    secret_key: str
    access_token_expire_minutes: int = 60

    # DATABASE
    database_url: str
    db_pool_size: int = Field(default=10, ge=1, le=100)
    db_max_overflow: int = Field(default=20, ge=0, le=200)
    db_pool_timeout_seconds: int = Field(default=30, ge=1, le=300)
    db_pool_recycle_seconds: int = Field(default=1800, ge=30, le=86_400)

    # AUTH HARDENING
    auth_rate_limit_max_attempts: int = Field(default=5, ge=1)
    auth_rate_limit_window_seconds: int = Field(default=300, ge=1)
    auth_rate_limit_lock_seconds: int = Field(default=900, ge=1)
    order_search_rate_limit_requests: int = Field(default=30, ge=1)
    order_search_rate_limit_window_seconds: int = Field(default=60, ge=1)

    # PAYMENTS
    public_base_url: str = "http://localhost:3000"
    api_base_url: str = "http://localhost:8000"
    chip_base_url: str = "https://gate.chip-in.asia/api/v1"
    chip_api_key_test: str | None = None
    chip_api_key_live: str | None = None
    chip_brand_id: str | None = None
    payment_webhook_secret: str = "dev-webhook-secret"
    chip_webhook_secret: str | None = None
    bizapp_webhook_secret: str | None = None

    # INTEGRATIONS
    http_timeout_seconds: float = Field(default=15.0, gt=0, le=120)
    loyverse_base_url: str = "https://api.loyverse.com/v1.0"
    loyverse_api_token: str | None = None
    loyverse_fee_variant_id: str | None = None
    parcelasia_base_url: str = "https://app.myparcelasia.com/apiv2"
    parcelasia_api_key: str | None = None
    default_sender_postcode: str = "40150"

    # INVENTORY AND ORDERS
    low_stock_threshold: int = Field(default=5, ge=0)
    reservation_expiry_minutes: int = Field(default=30, ge=1)
    stale_order_days: int = Field(default=7, ge=1)
    stock_archive_days: int = Field(default=365, ge=1)
    order_search_db_timeout_seconds: float = Field(default=6.0, gt=0)
    order_search_trace_timeout_seconds: float = Field(default=8.0, gt=0)
    api_timeout_hint_ms: int = Field(default=300000, ge=1000, le=1_800_000)

    # CORS
    cors_origins: List[str] = Field(default_factory=lambda: ["http://localhost:3000"])
    cors_origin_regex: str | None = None

    @field_validator("cors_origins", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> List[str]:
        if v is None:
            return []
        if isinstance(v, str):
            if not v.strip():
                return []
            if v.startswith("["):
                parsed = json.loads(v)
                if not isinstance(parsed, list):
                    raise ValueError("CORS_ORIGINS JSON value must be a list")
                return [str(i).strip() for i in parsed if str(i).strip()]
            return [i.strip() for i in v.split(",") if i.strip()]
        if isinstance(v, list):
            return [str(i).strip() for i in v if str(i).strip()]
        raise ValueError(v)

    @field_validator(
        "chip_api_key_test",
        "chip_api_key_live",
        "chip_brand_id",
        "chip_webhook_secret",
        "bizapp_webhook_secret",
        "loyverse_api_token",
        "loyverse_fee_variant_id",
        "parcelasia_api_key",
        mode="before",
    )
    @classmethod
    def normalize_optional_strings(cls, value: str | None) -> str | None:
        if value is None:
            return None
        cleaned = str(value).strip()
        return cleaned or None

    @field_validator("public_base_url", "api_base_url", "chip_base_url", "loyverse_base_url", "parcelasia_base_url")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.strip().rstrip("/")

    @model_validator(mode="after")
    def validate_production_safety(self) -> "Settings":
        env_value = self.env.lower().strip()
        if env_value not in {"prod", "production"}:
            return self

        weak_secrets = {
            "",
            "change_me",
            "change_me_please_to_a_long_random_string",
            "dev-secret-key-change-before-prod",
        }
        if self.secret_key.strip() in weak_secrets or len(self.secret_key.strip()) < 32:
            raise ValueError("SECRET_KEY must be a strong random value in production")

        if self.payment_webhook_secret.strip() in {"", "dev-webhook-secret"}:
            raise ValueError("PAYMENT_WEBHOOK_SECRET must be set in production")

        if "*" in self.cors_origins:
            raise ValueError("CORS_ORIGINS cannot contain '*' in production")
        if self.cors_origin_regex:
            raise ValueError("CORS_ORIGIN_REGEX cannot be set in production")

        return self

    def chip_api_key(self, environment: str) -> str | None:
        if (environment or "").strip().lower() == "live":
            return self.chip_api_key_live
        return self.chip_api_key_test

    def webhook_secret_for(self, gateway: str) -> str:
        overrides = {
            "chip": self.chip_webhook_secret,
            "bizapp": self.bizapp_webhook_secret,
        }
        return overrides.get(gateway) or self.payment_webhook_secret

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        enable_decoding=False,
    )


settings = Settings()
