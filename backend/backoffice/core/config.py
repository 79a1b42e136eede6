from __future__ import annotations

from functools import lru_cache

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


ISSUER_MODE_HTTP = "HTTP"
ISSUER_MODE_MOCK = "MOCK"

AFIP_ENV_PRODUCTION = "production"
AFIP_ENV_TESTING = "testing"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=(".env", "../.env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    database_url: str = Field(..., alias="DATABASE_URL")

    basic_auth_username: str = Field(..., alias="BASIC_AUTH_USERNAME")
    basic_auth_password: str = Field(..., alias="BASIC_AUTH_PASSWORD")

    cors_origins: str | None = Field(None, alias="CORS_ORIGINS")

    invoice_date_window_days: int = Field(5, alias="INVOICE_DATE_WINDOW_DAYS")

    # Per-agency issuance lease; renewed before every authorization of a batch.
    issuance_lock_ttl_seconds: int = Field(300, alias="ISSUANCE_LOCK_TTL_SECONDS")
    issuance_lock_wait_seconds: float = Field(30.0, alias="ISSUANCE_LOCK_WAIT_SECONDS")
    issuance_lock_poll_seconds: float = Field(0.5, alias="ISSUANCE_LOCK_POLL_SECONDS")

    # --- Tax authority (AFIP / ARCA) voucher gateway ---
    afip_env: str = Field(AFIP_ENV_PRODUCTION, alias="AFIP_ENV")
    afip_issuer_mode: str | None = Field(None, alias="AFIP_ISSUER_MODE")
    afip_gateway_base_url: str = Field("http://afip-gateway:8080", alias="AFIP_GATEWAY_BASE_URL")
    afip_gateway_token: str | None = Field(None, alias="AFIP_GATEWAY_TOKEN")
    afip_timeout_seconds: float = Field(30.0, alias="AFIP_TIMEOUT_SECONDS")
    afip_mock_point_of_sale: int = Field(1, alias="AFIP_MOCK_POINT_OF_SALE")

    @field_validator("afip_env", mode="before")
    @classmethod
    def _normalize_afip_env(cls, v: object) -> object:
        if isinstance(v, str):
            return v.strip().lower() or AFIP_ENV_PRODUCTION
        return v

    @field_validator("afip_issuer_mode", mode="before")
    @classmethod
    def _normalize_afip_issuer_mode(cls, v: object) -> object:
        if v is None:
            return None
        if isinstance(v, str):
            mode = v.strip().upper()
            if not mode:
                return None
            if mode not in {ISSUER_MODE_HTTP, ISSUER_MODE_MOCK}:
                raise ValueError(f"AFIP_ISSUER_MODE must be {ISSUER_MODE_HTTP} or {ISSUER_MODE_MOCK}")
            return mode
        return v

    @field_validator("afip_gateway_token", mode="before")
    @classmethod
    def _normalize_afip_gateway_token(cls, v: object) -> object:
        if v is None:
            return None
        if isinstance(v, str):
            token = v.strip()
            return token or None
        return v

    @model_validator(mode="after")
    def _resolve_issuer_mode(self) -> "Settings":
        # Homologation environments never talk to the real gateway unless asked to.
        if self.afip_issuer_mode is None:
            self.afip_issuer_mode = ISSUER_MODE_MOCK if self.afip_env == AFIP_ENV_TESTING else ISSUER_MODE_HTTP
        return self

    @property
    def afip_mock_enabled(self) -> bool:
        return self.afip_issuer_mode == ISSUER_MODE_MOCK


@lru_cache
def get_settings() -> Settings:
    return Settings()
