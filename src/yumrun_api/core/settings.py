from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


_TIER_ORDER = ("BRONZE", "SILVER", "GOLD", "PLATINUM")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "test", "staging", "production"] = "development"
    app_name: str = "YumRun API"
    api_prefix: str = "/api"
    database_url: str = "sqlite+aiosqlite:///./yumrun.db"
    database_echo: bool = False

    # Logging / telemetry
    log_level: str = "INFO"
    log_json: bool = True
    telemetry_enabled: bool = False
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: dict[str, str] = Field(default_factory=dict)

    @field_validator("otel_exporter_otlp_headers", mode="before")
    @classmethod
    def _parse_otlp_headers(cls, value: object) -> dict[str, str]:
        if value is None or value == "":
            return {}
        if isinstance(value, str):
            headers: dict[str, str] = {}
            for pair in value.split(","):
                key, _, header_value = pair.partition("=")
                if key.strip() and header_value.strip():
                    headers[key.strip()] = header_value.strip()
            return headers
        if isinstance(value, dict):
            return {str(key): str(item) for key, item in value.items()}
        return {}

    # Application URLs
    frontend_url: str = "http://localhost:3000"

    # Email / notification settings
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_username: str | None = None
    smtp_password: str | None = None
    smtp_use_tls: bool = True
    smtp_sender_email: str | None = None

    # Loyalty programme
    loyalty_tier_thresholds: dict[str, int] = Field(
        default_factory=lambda: {"BRONZE": 0, "SILVER": 1000, "GOLD": 5000, "PLATINUM": 10000}
    )
    loyalty_points_per_block: int = 10
    loyalty_currency_block: int = 100
    loyalty_points_expiry_months: int = 12
    loyalty_award_on_delivery: bool = True

    @field_validator("loyalty_tier_thresholds")
    @classmethod
    def _validate_tier_thresholds(cls, value: dict[str, int]) -> dict[str, int]:
        normalized = {str(key).upper(): int(points) for key, points in value.items()}
        missing = [tier for tier in _TIER_ORDER if tier not in normalized]
        if missing:
            raise ValueError(f"Missing loyalty tier thresholds: {', '.join(missing)}")
        unknown = sorted(set(normalized) - set(_TIER_ORDER))
        if unknown:
            raise ValueError(f"Unknown loyalty tiers: {', '.join(unknown)}")
        if normalized["BRONZE"] != 0:
            raise ValueError("BRONZE threshold must be 0")
        ordered = [normalized[tier] for tier in _TIER_ORDER]
        if any(lower >= upper for lower, upper in zip(ordered, ordered[1:])):
            raise ValueError("Loyalty tier thresholds must be strictly increasing")
        return {tier: normalized[tier] for tier in _TIER_ORDER}

    @field_validator("loyalty_points_per_block", "loyalty_currency_block", "loyalty_points_expiry_months")
    @classmethod
    def _require_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be a positive integer")
        return value

    # Orders
    order_default_eta_minutes: int = 45

    # Job scheduler
    job_scheduler_enabled: bool = False
    job_schedule_path: str = "config/schedules.toml"


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
