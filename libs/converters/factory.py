"""Converter factory.

Centralizes creation of ``TypedJsonMessageConverter`` from typed config so
applications don't hard-code media types or codec choices.
"""

from typing import Optional

import structlog

from libs.common.config import ConverterConfig
from libs.common.metrics import MetricsCollector, measure_time
from .base import media_types_to_str
from .codecs import Codec, CodecFactory
from .typed_json import TypedJsonMessageConverter

logger = structlog.get_logger("converters.factory")


@measure_time("create_converter")
def create_converter(
    config: Optional[ConverterConfig] = None,
    codec: Optional[Codec] = None,
    metrics: Optional[MetricsCollector] = None,
) -> TypedJsonMessageConverter:
    """Create a converter from configuration.

    Parameters
    - config: ``ConverterConfig``; read from the environment when omitted
    - codec: Codec overriding ``config.tjc_codec``
    - metrics: Collector attached when ``config.tjc_metrics_enabled``

    Raises ``ValueError`` for an unknown codec name and ``ConfigurationError``
    for a wildcard default media type.
    """
    config = config or ConverterConfig()
    codec = codec or CodecFactory.create(config.tjc_codec)
    if not config.tjc_metrics_enabled:
        metrics = None

    if config.tjc_default_media_type:
        converter = TypedJsonMessageConverter(
            config.tjc_default_media_type,
            *config.supported_media_types(),
            codec=codec,
            metrics=metrics,
        )
    else:
        converter = TypedJsonMessageConverter.for_json(
            config.tjc_replaces_json_converters,
            codec=codec,
            metrics=metrics,
        )

    logger.info(
        "Message converter configured",
        supported_media_types=media_types_to_str(converter.supported_media_types),
        codec=type(codec).__name__,
        metrics_enabled=metrics is not None,
    )
    return converter
