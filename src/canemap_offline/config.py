"""Configuration loading.

Settings are loaded in priority order (highest first):
  1. Environment variables  (CANEMAP__UPSTREAM__ORIGIN_URL=http://origin:5000)
  2. canemap.yaml           (searched in cwd, then platform config dir)
  3. Hardcoded defaults

The config file is optional. All fields have sensible defaults.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import platformdirs
from pydantic import BaseModel, ConfigDict, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

_DEFAULT_DATA_DIR = platformdirs.user_data_dir("canemap-offline")
_DEFAULT_DB_PATH = str(Path(_DEFAULT_DATA_DIR) / "cache.db")

DEFAULT_CACHE_NAME = "canemap-offline-v2"

# Worker and Driver pages plus the scripts they need to boot without a network.
DEFAULT_ESSENTIAL_URLS: tuple[str, ...] = (
    "/frontend/Worker/Workers.html",
    "/frontend/Driver/Driver_Dashboard.html",
    "/backend/Worker/Workers.js",
    "/backend/Driver/Driver_Dashboard.js",
    "/backend/Driver/driver-ui.js",
    "/backend/Driver/driver-init.js",
    "/backend/Common/ui-popup.js",
    "/backend/Common/firebase-config.js",
)

DEFAULT_MANAGED_MARKERS: tuple[str, ...] = ("/Worker/", "/Driver/", "/Common/")


def _find_config_file() -> str | None:
    """Return the path of the first canemap.yaml found, or None."""
    candidates = [
        Path("canemap.yaml"),
        Path(platformdirs.user_config_dir("canemap-offline")) / "canemap.yaml",
    ]
    for path in candidates:
        if path.exists():
            return str(path)
    return None


class ServerSettings(BaseModel):
    host: str = "0.0.0.0"
    port: int = 8080
    control_key: str = ""  # Empty disables bearer auth on /__offline/ endpoints


class UpstreamSettings(BaseModel):
    origin_url: str = "http://127.0.0.1:5000"
    timeout_seconds: float = 30.0


class StorageSettings(BaseModel):
    db_path: str = _DEFAULT_DB_PATH


class GateSettings(BaseModel):
    """Immutable policy for one cache generation.

    Passed to each ``OfflineCacheGate`` at construction, so two generations
    with different names can live side by side in one process.
    """

    model_config = ConfigDict(frozen=True)

    cache_name: str = DEFAULT_CACHE_NAME
    essential_urls: tuple[str, ...] = DEFAULT_ESSENTIAL_URLS
    excluded_marker: str = "handler"  # Matched case-insensitively anywhere in the path
    managed_markers: tuple[str, ...] = DEFAULT_MANAGED_MARKERS
    skip_waiting_on_install: bool = True

    @field_validator("cache_name", "excluded_marker")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v

    @field_validator("essential_urls")
    @classmethod
    def validate_absolute_paths(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        for url in v:
            if not url.startswith("/"):
                raise ValueError(f"Essential URL must be an absolute path: {url!r}")
        return v


class LoggingSettings(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "text"] = "json"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # Double-underscore separates nesting: CANEMAP__SERVER__PORT=9090
        env_prefix="CANEMAP__",
        env_nested_delimiter="__",
        yaml_file=_find_config_file(),
        yaml_file_encoding="utf-8",
    )

    server: ServerSettings = ServerSettings()
    upstream: UpstreamSettings = UpstreamSettings()
    storage: StorageSettings = StorageSettings()
    gate: GateSettings = GateSettings()
    logging: LoggingSettings = LoggingSettings()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
        **kwargs: Any,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,  # Constructor args (highest priority)
            env_settings,  # Environment variables
            YamlConfigSettingsSource(settings_cls),  # YAML file
            # dotenv and file secrets intentionally excluded
        )
