"""Configuration management for message converters.

This module centralizes environment-driven configuration for the converter
library and the applications embedding it. It builds on
``pydantic_settings.BaseSettings`` so configuration can be provided via
environment variables, ``.env`` files, or defaults.

Highlights
- Strongly-typed settings with sensible defaults
- One place to discover the ``TJC_*`` environment variables
- Small subclasses to keep concerns clear

Usage
- ``config = ConverterConfig()``
- Or select dynamically: ``config = get_config("converter")``
"""

from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration shared by everything embedding the converters.

    Field names match the environment variables (case-insensitive), e.g.
    ``TJC_LOG_LEVEL``.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    tjc_env: str = Field(default="local", description="Deployment environment name")

    # Logging
    tjc_log_level: str = Field(default="INFO", description="DEBUG, INFO, WARNING or ERROR")
    tjc_log_format: str = Field(default="json", description="json or console")

    # Metrics
    tjc_metrics_enabled: bool = Field(default=True, description="Record converter metrics")


class ConverterConfig(BaseConfig):
    """Configuration for building a ``TypedJsonMessageConverter``.

    An explicit ``tjc_default_media_type`` takes precedence over
    ``tjc_replaces_json_converters``.
    """

    tjc_replaces_json_converters: bool = Field(
        default=False,
        description="Act as the only JSON converter (application/json and friends)",
    )
    tjc_default_media_type: Optional[str] = Field(
        default=None,
        description="Custom default media type, e.g. application/vnd.acme+json",
    )
    tjc_supported_media_types: str = Field(
        default="",
        description="Comma separated additional media types",
    )
    tjc_codec: str = Field(default="jsonpickle", description="jsonpickle or msgspec")

    def supported_media_types(self) -> List[str]:
        """Additional media types as a list, blanks dropped."""
        return [item.strip() for item in self.tjc_supported_media_types.split(",") if item.strip()]


def get_config(name: str) -> BaseConfig:
    """Get configuration by name.

    Parameters
    - name: ``converter`` or ``base``

    Returns
    - A concrete ``BaseConfig`` subclass reading the ``TJC_*`` variables.
    """
    config_map = {
        "converter": ConverterConfig,
        "base": BaseConfig,
    }

    # Default to ``BaseConfig`` to avoid surprising crashes for unknown names.
    config_class = config_map.get(name, BaseConfig)
    return config_class()
