"""Webhook configuration using pydantic-settings with env var and YAML file support.

Env vars (AW_ prefix) take precedence over YAML config file values.
Required: AW_JELLYFIN_API_KEY plus at least one AniList token (AW_ANILIST_TOKEN
or a token under ``anilist_users``); anything missing causes an immediate exit.
"""

from __future__ import annotations

import logging
import os
import sys
from functools import lru_cache
from pathlib import Path
from typing import Optional

import pydantic
from pydantic import BaseModel, field_validator, model_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

logger = logging.getLogger(__name__)

APP_NAME = "anilistwatched"


def config_path() -> Path:
    """Location of the YAML config file.

    ``$AW_CONFIG_FILE`` if set, else ``$XDG_CONFIG_HOME/anilistwatched/config.yml``
    (``~/.config`` when XDG_CONFIG_HOME is unset).
    """
    explicit = os.environ.get("AW_CONFIG_FILE")
    if explicit:
        return Path(explicit).expanduser()
    base = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(base) / APP_NAME / "config.yml"


class AniListUser(BaseModel):
    """Per-user AniList credentials from the ``anilist_users`` block."""

    token: str = ""
    display_name: Optional[str] = None


class WebhookSettings(BaseSettings):
    """anilistwatched configuration.

    Precedence (highest to lowest):
    1. AW_-prefixed environment variables
    2. YAML config file (see config_path)
    3. Defaults defined below
    """

    model_config = SettingsConfigDict(
        env_prefix="AW_",
        extra="ignore",
    )

    # Required
    jellyfin_api_key: str

    # HTTP server
    bind: str = "localhost"
    port: int = 4091
    log_level: str = "info"
    allow_any_agent: bool = False  # Accept requests without a Jellyfin-Server/ User-Agent

    # Jellyfin
    jellyfin_url: str = ""  # Fallback when a payload carries no ServerUrl
    jellyfin_library: str = ""  # Default library for backfill
    provider_key: str = "anilist"

    # AniList
    anilist_token: str = ""  # Shared token for users without their own
    anilist_users: dict[str, AniListUser] = {}
    auto_add: bool = False

    # Upstream behaviour
    retry_attempts: int = 3
    retry_backoff: list[float] = [30.0, 60.0]
    request_timeout: float = 10.0
    serialize_per_show: bool = False

    @field_validator("retry_backoff")
    @classmethod
    def _backoff_non_negative(cls, value: list[float]) -> list[float]:
        if any(delay < 0 for delay in value):
            raise ValueError("retry_backoff delays must be >= 0")
        return value

    @field_validator("retry_attempts")
    @classmethod
    def _attempts_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("retry_attempts must be >= 1")
        return value

    @model_validator(mode="after")
    def _require_token(self) -> "WebhookSettings":
        if not self.anilist_token and not any(u.token for u in self.anilist_users.values()):
            raise ValueError(
                "no AniList token configured: set anilist_token or a token under anilist_users"
            )
        return self

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Return sources in priority order: init > env > YAML > defaults."""
        yaml_source = YamlConfigSettingsSource(
            settings_cls, yaml_file=config_path(), yaml_file_encoding="utf-8"
        )
        return (init_settings, env_settings, yaml_source)


@lru_cache(maxsize=1)
def get_settings() -> WebhookSettings:
    """Return the cached WebhookSettings instance.

    Exits with a helpful error message if required settings are missing.
    """
    try:
        return WebhookSettings()
    except pydantic.ValidationError as exc:
        missing: list[str] = []
        for error in exc.errors():
            if error.get("type") == "missing":
                loc = error.get("loc", ())
                if loc:
                    missing.append(f"AW_{str(loc[0]).upper()}")

        if missing:
            names = ", ".join(missing)
            print(
                f"\nMissing required configuration: {names}\n"
                f"Set these as environment variables or add them to {config_path()}\n"
                f"Example:\n"
                f"  export AW_JELLYFIN_API_KEY=your-api-key\n"
                f"  export AW_ANILIST_TOKEN=your-anilist-token\n",
                file=sys.stderr,
            )
        else:
            print(
                f"\nConfiguration error:\n{exc}\n",
                file=sys.stderr,
            )
        sys.exit(1)
