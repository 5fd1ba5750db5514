"""Base message converter contract.

Defines the abstract converter the web layer depends on, independent of the
codec doing the actual (de)serialization. Two entry-point groups exist:

- ``AbstractMessageConverter``: class-based ``can_read``/``read`` and
  ``can_write``/``write`` with default header handling
- ``GenericMessageConverter``: the same capabilities for generic target types
  (``List[Order]``, ``Dict[str, int]``) plus an optional context class

Converters implementing both share one media type predicate, so what can be
read can also be written.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional, Sequence, Tuple

import structlog

from .http import HttpHeaders, HttpInputMessage, HttpOutputMessage
from .media_type import MediaType

logger = structlog.get_logger("converters.base")


class ConverterError(Exception):
    """Base exception for converter operations."""
    pass


class ConfigurationError(ConverterError):
    """Converter was constructed with an unusable configuration."""
    pass


class MessageConversionError(ConverterError):
    """A message body could not be converted.

    The original failure is kept both as ``cause`` and as ``__cause__`` when
    raised with ``from``.
    """

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause


class MessageNotReadableError(MessageConversionError):
    """The request body is malformed for the declared or expected type."""
    pass


class MessageNotWritableError(MessageConversionError):
    """The response body could not be serialized."""
    pass


class AbstractMessageConverter(ABC):
    """Abstract base class for message converters.

    Parameters
    - supported_media_types: Ordered media types; the first is the default
      content type for responses

    Subclasses implement ``supports``, ``read_internal`` and
    ``write_internal``.
    """

    # Charset attached to a response Content-Type lacking one
    default_charset: Optional[str] = None

    def __init__(self, *supported_media_types: MediaType):
        self._supported_media_types: Tuple[MediaType, ...] = tuple(supported_media_types)

    @property
    def supported_media_types(self) -> Tuple[MediaType, ...]:
        return self._supported_media_types

    @abstractmethod
    def supports(self, cls: type) -> bool:
        """Whether this converter handles instances of ``cls``."""
        pass

    def can_read(self, cls: type, media_type: Optional[MediaType]) -> bool:
        return self.supports(cls) and self._can_read_media_type(media_type)

    def can_write(self, cls: type, media_type: Optional[MediaType]) -> bool:
        return self.supports(cls) and self._can_write_media_type(media_type)

    def _can_read_media_type(self, media_type: Optional[MediaType]) -> bool:
        return self._is_supported_media_type(media_type)

    def _can_write_media_type(self, media_type: Optional[MediaType]) -> bool:
        return self._is_supported_media_type(media_type)

    def _is_supported_media_type(self, media_type: Optional[MediaType]) -> bool:
        # No Content-Type asserted: proceed with best effort
        if media_type is None:
            return True
        return any(
            supported.is_compatible_with(media_type)
            for supported in self._supported_media_types
        )

    def read(self, cls: type, input_message: HttpInputMessage) -> Any:
        """Read an instance of ``cls`` from the message body."""
        return self.read_internal(cls, input_message)

    def write(
        self,
        obj: Any,
        content_type: Optional[MediaType],
        output_message: HttpOutputMessage,
    ) -> None:
        """Write ``obj`` to the message body, setting default headers first."""
        self.add_default_headers(output_message.headers, obj, content_type)
        self.write_internal(obj, output_message)
        if not output_message.body.closed:
            output_message.body.flush()

    def get_default_content_type(self, obj: Any) -> Optional[MediaType]:
        """Content type used when the caller did not request one."""
        return self._supported_media_types[0] if self._supported_media_types else None

    def get_content_length(self, obj: Any, content_type: Optional[MediaType]) -> Optional[int]:
        """Length of the serialized body when known up front; ``None`` otherwise."""
        return None

    def add_default_headers(
        self,
        headers: HttpHeaders,
        obj: Any,
        content_type: Optional[MediaType],
    ) -> None:
        """Fill in ``Content-Type`` and ``Content-Length`` when missing.

        An explicit Content-Type already on ``headers`` always wins. Otherwise
        ``content_type`` is used when it is concrete, falling back to the
        default content type. ``default_charset`` is attached to a type that
        carries no charset.
        """
        if "content-type" not in headers:
            content_type_to_use = content_type
            if content_type_to_use is None or not content_type_to_use.is_concrete:
                content_type_to_use = self.get_default_content_type(obj)
            if content_type_to_use is not None:
                if content_type_to_use.charset is None and self.default_charset is not None:
                    content_type_to_use = content_type_to_use.with_charset(self.default_charset)
                headers.content_type = content_type_to_use
                logger.debug("Applied default Content-Type", content_type=str(content_type_to_use))

        if "content-length" not in headers:
            length = self.get_content_length(obj, headers.content_type)
            if length is not None:
                headers.content_length = length

    @abstractmethod
    def read_internal(self, cls: type, input_message: HttpInputMessage) -> Any:
        pass

    @abstractmethod
    def write_internal(self, obj: Any, output_message: HttpOutputMessage) -> None:
        pass


class GenericMessageConverter(ABC):
    """Converter contract for generic target types.

    ``context_class`` is the class in whose context ``target_type`` was
    declared (e.g. the handler's owner); it may be ``None``.
    """

    @abstractmethod
    def can_read_generic(
        self,
        target_type: Any,
        context_class: Optional[type],
        media_type: Optional[MediaType],
    ) -> bool:
        pass

    @abstractmethod
    def read_generic(
        self,
        target_type: Any,
        context_class: Optional[type],
        input_message: HttpInputMessage,
    ) -> Any:
        pass

    @abstractmethod
    def can_write_generic(
        self,
        target_type: Any,
        cls: Optional[type],
        media_type: Optional[MediaType],
    ) -> bool:
        pass

    @abstractmethod
    def write_generic(
        self,
        obj: Any,
        target_type: Any,
        content_type: Optional[MediaType],
        output_message: HttpOutputMessage,
    ) -> None:
        pass


def media_types_to_str(media_types: Sequence[MediaType]) -> str:
    """Render media types for log lines and error details."""
    return ", ".join(str(media_type) for media_type in media_types)
