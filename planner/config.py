from __future__ import annotations

from functools import lru_cache
from pydantic_settings import BaseSettings
from pydantic import Field, field_validator
from typing import List


class Settings(BaseSettings):
    app_name: str = Field(default="familyplanner-shopping")
    environment: str = Field(default="dev")  # dev|staging|prod|test
    log_json: bool = Field(default=True)
    log_level: str = Field(default="INFO")

    # Tokens come from a Clerk-compatible issuer publishing a JWKS document
    clerk_issuer: str | None = Field(default=None)
    clerk_jwks_url: str | None = Field(default=None)
    clerk_audience: str | None = Field(default=None)
    jwks_cache_seconds: int = Field(default=600, ge=0)
    auth_disable_verification: bool = Field(default=False)

    # Primary (SQL) and secondary (Redis) stores; either may be left unset
    database_url: str | None = Field(default=None)
    redis_url: str | None = Field(default=None)
    redis_shopping_prefix: str = Field(default="shopping")
    redis_week_plan_prefix: str = Field(default="weekplan")
    redis_family_prefix: str = Field(default="family")
    redis_recipe_hash: str = Field(default="recipes")

    # Shopping list behaviour
    duplicate_window_seconds: float = Field(default=5.0, ge=0)
    default_manual_unit: str = Field(default="pcs")
    manual_add_rate_limit: str = Field(default="60/minute")
    toggle_rate_limit: str = Field(default="120/minute")

    cors_allowed_origins: List[str] = Field(default_factory=lambda: ["*"])
    request_max_body_mb: int = Field(default=5)

    sentry_dsn: str | None = Field(default=None)
    sentry_traces_sample_rate: float = Field(default=0.0)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False

    @field_validator("cors_allowed_origins", mode="before")
    @classmethod
    def _csv_to_list(cls, v):
        if isinstance(v, str):
            return [s.strip() for s in v.split(",") if s.strip()]
        return v


@lru_cache
def get_settings() -> Settings:
    return Settings()
