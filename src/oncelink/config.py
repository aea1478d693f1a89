"""Process-wide configuration for the oncelink server."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

if TYPE_CHECKING:
    from collections.abc import Mapping

DEFAULT_TTL_SECONDS = 1800
DEFAULT_MAX_BYTES = 100 * 1024 * 1024


class Settings(BaseSettings):
    """Immutable server settings, built once at startup and injected.

    Each field is read from the upper-cased environment variable of the
    same name (``ttl_seconds`` from ``TTL_SECONDS`` and so on). Empty
    variables fall back to the field defaults.
    """

    model_config = SettingsConfigDict(frozen=True, env_ignore_empty=True)

    public_app_url: str = "https://example.com/"
    allowed_origin: str = "*"
    ttl_seconds: int = Field(default=DEFAULT_TTL_SECONDS, gt=0)
    max_bytes: int = Field(default=DEFAULT_MAX_BYTES, gt=0)
    storage_dir: Path = Path("./oncelink-data")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        """Build settings from the process environment or an explicit mapping.

        Values found in ``environ`` take precedence over the process
        environment. Invalid values raise ``pydantic.ValidationError``.
        """
        if environ is None:
            return cls()
        values = {
            name: environ[name.upper()]
            for name in cls.model_fields
            if environ.get(name.upper())
        }
        return cls(_env_file=None, **values)

    @property
    def ttl_ms(self) -> int:
        return self.ttl_seconds * 1000
