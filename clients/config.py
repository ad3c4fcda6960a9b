"""
Environment configuration for the external systems.

Values are read from the process environment, after loading the .env file at
the project root (same as the Supabase client).

Environment variables:
- INSTANTLY_API_KEY (required for live runs), INSTANTLY_BASE_URL, INSTANTLY_ASSIGNED_TO
- PIPEDRIVE_API_TOKEN (optional), PIPEDRIVE_BASE_URL, PIPEDRIVE_STATUS_FIELD_KEY
- MISTRAL_API_KEY (optional), MISTRAL_MODEL, MISTRAL_BASE_URL
- APP_BASE_URL, CRON_SECRET, LOG_LEVEL
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

env_path = Path(__file__).parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DEFAULT_INSTANTLY_BASE_URL = "https://api.instantly.ai"
DEFAULT_PIPEDRIVE_BASE_URL = "https://api.pipedrive.com/v1"
DEFAULT_PIPEDRIVE_STATUS_FIELD_KEY = "e8a27f47529d2091399f063b834339316d7d852a"
DEFAULT_MISTRAL_BASE_URL = "https://api.mistral.ai/v1"
DEFAULT_MISTRAL_MODEL = "mistral-small-latest"
DEFAULT_APP_BASE_URL = "http://localhost:8000"


def _env(name: str) -> Optional[str]:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    return value.strip()


@dataclass(frozen=True, slots=True)
class InstantlyConfig:
    api_key: str
    base_url: str = DEFAULT_INSTANTLY_BASE_URL
    assigned_to: Optional[str] = None

    @classmethod
    def from_env(cls) -> "InstantlyConfig":
        api_key = _env("INSTANTLY_API_KEY")
        if not api_key:
            raise RuntimeError(
                "Missing environment variable: INSTANTLY_API_KEY. "
                "Set INSTANTLY_API_KEY to your Instantly API key."
            )
        return cls(
            api_key=api_key,
            base_url=(_env("INSTANTLY_BASE_URL") or DEFAULT_INSTANTLY_BASE_URL).rstrip("/"),
            assigned_to=_env("INSTANTLY_ASSIGNED_TO"),
        )


@dataclass(frozen=True, slots=True)
class PipedriveConfig:
    api_token: str
    base_url: str = DEFAULT_PIPEDRIVE_BASE_URL
    status_field_key: str = DEFAULT_PIPEDRIVE_STATUS_FIELD_KEY

    @classmethod
    def from_env(cls) -> Optional["PipedriveConfig"]:
        """None when Pipedrive is not configured (the customer check then uses company status only)."""

        api_token = _env("PIPEDRIVE_API_TOKEN")
        if not api_token:
            return None
        return cls(
            api_token=api_token,
            base_url=(_env("PIPEDRIVE_BASE_URL") or DEFAULT_PIPEDRIVE_BASE_URL).rstrip("/"),
            status_field_key=_env("PIPEDRIVE_STATUS_FIELD_KEY") or DEFAULT_PIPEDRIVE_STATUS_FIELD_KEY,
        )


@dataclass(frozen=True, slots=True)
class MistralConfig:
    api_key: str
    model: str = DEFAULT_MISTRAL_MODEL
    base_url: str = DEFAULT_MISTRAL_BASE_URL

    @classmethod
    def from_env(cls) -> Optional["MistralConfig"]:
        """None when personalization is disabled."""

        api_key = _env("MISTRAL_API_KEY")
        if not api_key:
            return None
        return cls(
            api_key=api_key,
            model=_env("MISTRAL_MODEL") or DEFAULT_MISTRAL_MODEL,
            base_url=(_env("MISTRAL_BASE_URL") or DEFAULT_MISTRAL_BASE_URL).rstrip("/"),
        )


@dataclass(frozen=True, slots=True)
class AppConfig:
    app_base_url: str = DEFAULT_APP_BASE_URL
    cron_secret: Optional[str] = None
    log_level: str = "INFO"

    @property
    def worker_url(self) -> str:
        return f"{self.app_base_url}/api/v1/assignment/run"

    @classmethod
    def from_env(cls) -> "AppConfig":
        return cls(
            app_base_url=(_env("APP_BASE_URL") or DEFAULT_APP_BASE_URL).rstrip("/"),
            cron_secret=_env("CRON_SECRET"),
            log_level=(_env("LOG_LEVEL") or "INFO").upper(),
        )


__all__ = ["InstantlyConfig", "PipedriveConfig", "MistralConfig", "AppConfig"]
