"""Common utilities shared across the converter library.

Includes:
- ``config``: Pydantic-based configuration from environment variables.
- ``logging``: structured logging setup with structlog.
- ``metrics``: Prometheus metrics helpers.

Import pattern:
- from libs.common.config import ConverterConfig
- from libs.common.logging import configure_logging
"""
