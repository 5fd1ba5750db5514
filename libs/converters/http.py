"""HTTP message abstractions exchanged with converters.

Converters never see framework request/response objects directly. The web
layer wraps headers and raw byte streams into ``HttpInputMessage`` and
``HttpOutputMessage`` so the same converter can be driven from FastAPI,
a test, or any other transport.
"""

from dataclasses import dataclass, field
from typing import BinaryIO, Optional

from starlette.datastructures import MutableHeaders

from .media_type import MediaType


class HttpHeaders(MutableHeaders):
    """Case-insensitive HTTP headers with typed accessors."""

    @property
    def content_type(self) -> Optional[MediaType]:
        """Parsed ``Content-Type`` or ``None`` when the header is absent.

        Raises ``InvalidMediaTypeError`` for a malformed value.
        """
        value = self.get("content-type")
        if value is None or not value.strip():
            return None
        return MediaType.parse(value)

    @content_type.setter
    def content_type(self, media_type: Optional[MediaType]) -> None:
        if media_type is None:
            if "content-type" in self:
                del self["content-type"]
            return
        if media_type.is_wildcard_type or media_type.is_wildcard_subtype:
            raise ValueError(f"Content-Type must not contain wildcards: {media_type}")
        self["content-type"] = str(media_type)

    @property
    def content_length(self) -> Optional[int]:
        value = self.get("content-length")
        return int(value) if value is not None else None

    @content_length.setter
    def content_length(self, length: Optional[int]) -> None:
        if length is None:
            if "content-length" in self:
                del self["content-length"]
            return
        self["content-length"] = str(length)


@dataclass
class HttpInputMessage:
    """Inbound message: request headers plus a readable binary body."""
    body: BinaryIO
    headers: HttpHeaders = field(default_factory=HttpHeaders)


@dataclass
class HttpOutputMessage:
    """Outbound message: response headers plus a writable binary body."""
    body: BinaryIO
    headers: HttpHeaders = field(default_factory=HttpHeaders)
