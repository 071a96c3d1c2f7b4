"""Environment-driven configuration for the datastore.

Settings are read from ``DATASTORE_*`` environment variables (and an optional
``.env`` file) through :mod:`pydantic_settings`.  Defaults keep the local cache
under the :mod:`pystow` data home so ``PYSTOW_HOME`` relocates it along with
other tooling data.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional

import pystow
from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigError

__all__ = [
    "DatastoreSettings",
    "default_cache_dir",
    "load_settings",
]

_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}


def default_cache_dir() -> Path:
    """Return the pystow-managed cache root, creating it when missing."""

    return pystow.join("datastore", "cache")


class DatastoreSettings(BaseSettings):
    """Runtime configuration shared by the facade, URL resolver, and CLI."""

    cache_dir: Optional[Path] = Field(
        default=None,
        description="Root of the local cache; each store gets a subdirectory.",
    )
    remote_url_template: str = Field(
        default="s3://{name}.datastore",
        description="fsspec URL of a store's remote namespace; '{name}' is the store name.",
    )
    default_store: str = Field(default="public", min_length=1)
    chunk_size_bytes: int = Field(default=1 << 20, gt=0)
    interprocess_locks: bool = Field(
        default=False,
        description="Also serialise downloads across processes with lock files.",
    )
    log_level: str = Field(default="INFO")
    log_dir: Optional[Path] = None
    log_retention_days: int = Field(default=30, ge=1)

    model_config = SettingsConfigDict(
        env_prefix="DATASTORE_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("remote_url_template")
    @classmethod
    def _template_has_name(cls, value: str) -> str:
        if "{name}" not in value:
            raise ValueError("remote_url_template must contain '{name}'")
        return value

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        upper = value.upper()
        if upper not in _LEVELS:
            raise ValueError(f"log_level must be one of {sorted(_LEVELS)}")
        return upper

    def resolved_cache_dir(self) -> Path:
        """Return the configured cache root or the pystow default."""

        if self.cache_dir is not None:
            return self.cache_dir.expanduser()
        return default_cache_dir()

    def remote_url(self, store_name: str) -> str:
        """Return the remote namespace URL for ``store_name``."""

        return self.remote_url_template.format(name=store_name)


def load_settings(**overrides: Any) -> DatastoreSettings:
    """Build settings from the environment, applying explicit ``overrides``.

    ``None`` overrides are ignored so CLI options left unset fall through to
    the environment.
    """

    values = {key: value for key, value in overrides.items() if value is not None}
    try:
        settings = DatastoreSettings(**values)
    except ValidationError as exc:
        messages = []
        for error in exc.errors():
            location = ".".join(str(part) for part in error["loc"])
            messages.append(f"{location}: {error['msg']}")
        raise ConfigError("Invalid datastore settings: " + "; ".join(messages)) from exc
    if values:
        logging.getLogger("Datastore").debug(
            "settings overridden",
            extra={"stage": "config", "fields": sorted(values)},
        )
    return settings
