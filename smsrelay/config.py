"""Configuration utilities for the SMS relay."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .delivery import DEFAULT_ENDPOINT, DEFAULT_TIMEOUT, DEFAULT_USER_AGENT, MAX_ATTEMPTS
from .logbook import DEFAULT_CAPACITY

load_dotenv()


class Settings(BaseSettings):
    """Environment-backed settings, read from ``SMSRELAY_*`` variables."""

    model_config = SettingsConfigDict(env_prefix="SMSRELAY_", env_file=".env", env_file_encoding="utf-8", extra="ignore")

    secret_key: Optional[str] = Field(default=None, description="Secret protecting the credential store")
    data_directory: Path = Field(default=Path("~/.smsrelay"), validate_default=True)
    endpoint_base: str = Field(default=DEFAULT_ENDPOINT)
    device_label: Optional[str] = None
    user_agent: str = DEFAULT_USER_AGENT
    request_timeout: float = Field(default=DEFAULT_TIMEOUT, gt=0)
    max_attempts: int = Field(default=MAX_ATTEMPTS, ge=1, le=MAX_ATTEMPTS)
    log_capacity: int = Field(default=DEFAULT_CAPACITY, ge=1)

    @field_validator("data_directory", mode="before")
    @classmethod
    def _expand_path(cls, value):
        if isinstance(value, str):
            return Path(value).expanduser()
        if isinstance(value, Path):
            return value.expanduser()
        raise ValueError("data_directory must be a filesystem path")

    @field_validator("endpoint_base")
    @classmethod
    def _strip_endpoint(cls, value: str) -> str:
        value = value.strip().rstrip("/")
        if not value.startswith(("https://", "http://")):
            raise ValueError("endpoint_base must be an http(s) URL")
        return value

    @property
    def filters_path(self) -> Path:
        return self.data_directory / "filters.json"

    @property
    def credentials_path(self) -> Path:
        return self.data_directory / "credentials.enc"

    @property
    def log_path(self) -> Path:
        return self.data_directory / "events.json"


@lru_cache()
def get_settings() -> Settings:
    """Return cached application settings."""

    return Settings()


__all__ = ["Settings", "get_settings"]
