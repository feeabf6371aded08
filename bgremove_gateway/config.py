"""
Configuration loader for the background-removal gateway.

Environment variables are centralized here to keep the rest of the code
focused on request handling. Values are read once at start-up; there is no
hot reload.
"""

from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

RESPONSE_FORMATS = {"json", "binary"}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # Server
    host: str = Field("0.0.0.0")
    port: int = Field(4001)
    cors_origins: str = Field("*")  # comma separated
    log_level: str = Field("INFO")

    # Auth: with AUTH_ENABLED and no API_KEY every request is rejected
    auth_enabled: bool = Field(True)
    api_key: Optional[str] = Field(None)

    # Upload gating
    max_upload_bytes: int = Field(10 * 1024 * 1024)

    # Rate limiting
    rate_limit_enabled: bool = Field(True)
    rate_limit_window_seconds: float = Field(60.0)
    rate_limit_max_requests: int = Field(60)

    # Output
    response_format: str = Field("json")

    # Removal backend
    rembg_model: str = Field("u2net")
    removal_timeout_seconds: float = Field(120.0)

    @field_validator("response_format")
    @classmethod
    def validate_response_format(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in RESPONSE_FORMATS:
            raise ValueError("RESPONSE_FORMAT must be one of json|binary")
        return v

    @field_validator(
        "max_upload_bytes",
        "rate_limit_window_seconds",
        "rate_limit_max_requests",
        "removal_timeout_seconds",
    )
    @classmethod
    def validate_positive(cls, v):
        if v <= 0:
            raise ValueError("must be greater than zero")
        return v

    @field_validator("api_key")
    @classmethod
    def blank_key_is_unset(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        return v

    @property
    def cors_origin_list(self) -> List[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings to avoid reparsing env on every call."""
    return Settings()


def describe_size_limit(max_bytes: int) -> str:
    """
    Human-readable form of the upload limit, used in error messages.

    Whole megabytes render as ``10MB``; anything else falls back to KB.
    """
    mb = 1024 * 1024
    if max_bytes % mb == 0:
        return f"{max_bytes // mb}MB"
    return f"{max_bytes / 1024:.0f}KB"
