"""Message converter for type-preserving JSON.

``TypedJsonMessageConverter`` negotiates media types and charsets and hands
the actual (de)serialization to an injected ``Codec`` (``JsonPickleCodec``
unless configured otherwise). Codec failures are translated into
``MessageNotReadableError`` / ``MessageNotWritableError`` so no codec error
type crosses the converter boundary.

Two modes
- Dedicated (default): bound to ``application/yagson``; may be installed
  next to other JSON converters
- Replace mode: the only JSON converter; produces ``application/json`` and
  also accepts ``application/*+json`` and ``application/yagson``

The converter keeps no per-request state. The ``codec`` slot may be
reassigned by the owning application, but only at startup: reassignment is
not synchronized with in-flight requests.
"""

import io
import time
from typing import Any, Mapping, Optional, Tuple, Union

import structlog

from libs.common.metrics import MetricsCollector
from .base import (
    AbstractMessageConverter,
    ConfigurationError,
    GenericMessageConverter,
    MessageNotReadableError,
    MessageNotWritableError,
    media_types_to_str,
)
from .codecs import Codec, CodecParseError, CodecWriteError, JsonPickleCodec
from .http import HttpInputMessage, HttpOutputMessage
from .media_type import (
    DEFAULT_CHARSET,
    MT_JSON,
    MT_JSON_PLUS,
    MT_YAGSON,
    MediaType,
)

logger = structlog.get_logger("converters.typed_json")

MediaTypeLike = Union[MediaType, str]


def _to_media_type(value: MediaTypeLike) -> MediaType:
    """Accept a ``MediaType`` as is; parse a string and default its charset."""
    if isinstance(value, MediaType):
        return value
    media_type = MediaType.parse(value)
    if media_type.charset is None:
        media_type = media_type.with_charset(DEFAULT_CHARSET)
    return media_type


def build_supported_media_types(
    default_type: MediaTypeLike,
    other_supported_types: Tuple[MediaTypeLike, ...] = (),
) -> Tuple[MediaType, ...]:
    """Validate and assemble the supported media types, default first.

    Raises ``ConfigurationError`` if the default type has a wildcard type or
    subtype.
    """
    default_media_type = _to_media_type(default_type)
    if default_media_type.is_wildcard_type or default_media_type.is_wildcard_subtype:
        raise ConfigurationError(
            f"The default MediaType must not contain wildcards: {default_media_type}"
        )
    return (default_media_type,) + tuple(_to_media_type(other) for other in other_supported_types)


def resolve_charset(headers: Optional[Mapping[str, str]]) -> str:
    """Charset of the ``Content-Type`` header, or ``DEFAULT_CHARSET``."""
    if headers is None:
        return DEFAULT_CHARSET
    value = next((v for k, v in headers.items() if k.lower() == "content-type"), None)
    if value is None or not value.strip():
        return DEFAULT_CHARSET
    charset = MediaType.parse(value).charset
    return charset if charset is not None else DEFAULT_CHARSET


class TypedJsonMessageConverter(AbstractMessageConverter, GenericMessageConverter):
    """Converter delegating JSON (de)serialization to a type-preserving codec.

    Parameters
    - default_type: Media type set on responses when none was negotiated.
      ``MediaType`` values are used as given; strings are parsed and get
      ``charset=UTF-8`` unless they name a charset. Defaults to
      ``application/yagson``.
    - other_supported_types: Further accepted media types (same rules)
    - codec: Codec doing the actual work; ``JsonPickleCodec()`` by default
    - metrics: Optional ``MetricsCollector`` receiving one observation per
      read/write
    """

    default_charset = DEFAULT_CHARSET

    def __init__(
        self,
        default_type: Optional[MediaTypeLike] = None,
        *other_supported_types: MediaTypeLike,
        codec: Optional[Codec] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        if default_type is None:
            if other_supported_types:
                raise ConfigurationError("A default MediaType is required when other types are given")
            default_type = MT_YAGSON
        super().__init__(*build_supported_media_types(default_type, other_supported_types))
        self._codec: Codec = codec if codec is not None else JsonPickleCodec()
        self.metrics = metrics

        logger.debug(
            "Typed JSON converter created",
            supported_media_types=media_types_to_str(self.supported_media_types),
            codec=type(self._codec).__name__,
        )

    @classmethod
    def for_json(
        cls,
        replaces_json_converters: bool,
        codec: Optional[Codec] = None,
        metrics: Optional[MetricsCollector] = None,
    ) -> "TypedJsonMessageConverter":
        """Create a converter in replace mode or dedicated mode.

        In replace mode the converter is meant to be the only JSON converter:
        it produces ``application/json`` and accepts every JSON media type.
        Otherwise it is bound to ``application/yagson`` only.
        """
        if replaces_json_converters:
            return cls(MT_JSON, MT_JSON_PLUS, MT_YAGSON, codec=codec, metrics=metrics)
        return cls(MT_YAGSON, codec=codec, metrics=metrics)

    @classmethod
    def replacing_json_converters(
        cls,
        codec: Optional[Codec] = None,
        metrics: Optional[MetricsCollector] = None,
    ) -> "TypedJsonMessageConverter":
        return cls.for_json(True, codec=codec, metrics=metrics)

    @property
    def codec(self) -> Codec:
        return self._codec

    @codec.setter
    def codec(self, codec: Codec) -> None:
        if codec is None:
            raise ValueError("codec must not be None")
        self._codec = codec

    def supports(self, cls: type) -> bool:
        # Type checks happen in the codec at read/write time
        return True

    def can_read_generic(
        self,
        target_type: Any,
        context_class: Optional[type],
        media_type: Optional[MediaType],
    ) -> bool:
        return self._can_read_media_type(media_type)

    def can_write_generic(
        self,
        target_type: Any,
        cls: Optional[type],
        media_type: Optional[MediaType],
    ) -> bool:
        return self._can_write_media_type(media_type)

    def read_internal(self, cls: type, input_message: HttpInputMessage) -> Any:
        return self._read_with_type(input_message, cls)

    def read_generic(
        self,
        target_type: Any,
        context_class: Optional[type],
        input_message: HttpInputMessage,
    ) -> Any:
        return self._read_with_type(input_message, target_type)

    def write_internal(self, obj: Any, output_message: HttpOutputMessage) -> None:
        self._write_with_type(object, obj, output_message)

    def write_generic(
        self,
        obj: Any,
        target_type: Any,
        content_type: Optional[MediaType],
        output_message: HttpOutputMessage,
    ) -> None:
        self.add_default_headers(output_message.headers, obj, content_type)
        self._write_with_type(target_type, obj, output_message)

    def _read_with_type(self, input_message: HttpInputMessage, target_type: Any) -> Any:
        charset = resolve_charset(input_message.headers)
        media_type = input_message.headers.get("content-type")
        start_time = time.time()
        logger.debug(
            "Reading message",
            target_type=_describe(target_type),
            media_type=media_type,
            charset=charset,
        )

        with io.TextIOWrapper(input_message.body, encoding=charset, newline="") as reader:
            try:
                result = self._codec.decode(reader, target_type)
            except (CodecParseError, UnicodeDecodeError) as e:
                self._record("read", media_type, "error", start_time)
                logger.warning(
                    "Could not read JSON",
                    target_type=_describe(target_type),
                    charset=charset,
                    error=str(e),
                )
                raise MessageNotReadableError(f"Could not read JSON: {e}", cause=e) from e

        self._record("read", media_type, "success", start_time)
        return result

    def _write_with_type(self, target_type: Any, obj: Any, output_message: HttpOutputMessage) -> None:
        headers = output_message.headers
        self.add_default_headers(headers, obj, None)

        charset = resolve_charset(headers)
        media_type = headers.get("content-type")
        start_time = time.time()
        logger.debug(
            "Writing message",
            target_type=_describe(target_type),
            media_type=media_type,
            charset=charset,
        )

        writer = io.TextIOWrapper(output_message.body, encoding=charset, newline="")
        completed = False
        try:
            self._codec.encode(obj, target_type, writer)
            writer.close()
            completed = True
        except (CodecWriteError, UnicodeEncodeError) as e:
            self._record("write", media_type, "error", start_time)
            logger.warning(
                "Could not write JSON",
                target_type=_describe(target_type),
                charset=charset,
                error=str(e),
            )
            raise MessageNotWritableError(f"Could not write JSON: {e}", cause=e) from e
        finally:
            # On any failure release the wrapper but leave the caller's stream open
            if not completed and not writer.closed:
                writer.detach()

        self._record("write", media_type, "success", start_time)

    def _record(self, direction: str, media_type: Optional[str], outcome: str, start_time: float) -> None:
        if self.metrics is None:
            return
        self.metrics.record_message(
            direction=direction,
            media_type=_label(media_type),
            outcome=outcome,
            duration=time.time() - start_time,
        )


def _describe(target_type: Any) -> str:
    return getattr(target_type, "__qualname__", None) or repr(target_type)


def _label(media_type: Optional[str]) -> str:
    """Metric label for a Content-Type header: type/subtype without parameters."""
    if not media_type:
        return "none"
    return media_type.split(";", 1)[0].strip().lower()
