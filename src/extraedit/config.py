"""Library configuration using pydantic-settings.

Every value can be overridden with an ``EXTRAEDIT_``-prefixed environment
variable or a ``.env`` file. Components take explicit keyword arguments
that default from these settings.
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_LOG_LEVELS = {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}


class Settings(BaseSettings):
    """Editor settings loaded from environment variables.

    Storage settings are only needed for the HTTP-backed collaborators:
    - EXTRAEDIT_STORAGE_URL: Base URL of the storage/records REST API
    - EXTRAEDIT_STORAGE_API_KEY: API key sent with every request
    """

    model_config = SettingsConfigDict(
        env_prefix="EXTRAEDIT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Autosave
    autosave_delay_seconds: float = 30.0
    save_timeout_seconds: float = 30.0

    # Ingestion
    sniff_bytes: int = 800

    # Storage key resolution
    signed_url_ttl_seconds: int = 3600
    listing_limit: int = 200
    legacy_roots: list[str] = ["root"]
    # Shared folders searched by the listing fallback only
    listing_prefixes: list[str] = ["JG Docs and Info"]

    # HTTP collaborators
    storage_url: str = ""
    storage_api_key: str = ""
    storage_bucket: str = "files"
    records_table: str = "files"
    request_timeout_seconds: int = 60

    # Logging
    log_level: str = "INFO"
    json_logs: bool = False

    @property
    def has_remote_storage(self) -> bool:
        """Check if the HTTP storage collaborators are configured."""
        return bool(self.storage_url and self.storage_api_key)

    @field_validator(
        "autosave_delay_seconds",
        "save_timeout_seconds",
        "request_timeout_seconds",
    )
    @classmethod
    def validate_positive(cls, v: float) -> float:
        """Validate delays and timeouts are positive."""
        if v <= 0:
            raise ValueError("must be greater than zero")
        return v

    @field_validator("sniff_bytes", "listing_limit", "signed_url_ttl_seconds")
    @classmethod
    def validate_positive_int(cls, v: int) -> int:
        """Validate sizes and limits are positive."""
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is a known loguru level."""
        level = v.upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of: {sorted(_LOG_LEVELS)}")
        return level

    @model_validator(mode="after")
    def validate_storage_settings(self) -> Settings:
        """Validate that storage URL and key are configured together."""
        if bool(self.storage_url) != bool(self.storage_api_key):
            raise ValueError(
                "Configuration errors:\n  - "
                "EXTRAEDIT_STORAGE_URL and EXTRAEDIT_STORAGE_API_KEY must be set together"
            )
        return self


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Settings are loaded once and cached for the lifetime of the process.
    """
    return Settings()
