"""Codec adapters used by message converters.

A codec turns a character stream into an object of a requested type and
back. Converters only rely on the ``Codec`` contract and its two error types;
every concrete codec maps its library's native errors onto them.

Available codecs
- ``JsonPickleCodec``: type-preserving JSON via ``jsonpickle`` (type tags,
  object identity and self references survive a round trip)
- ``MsgspecCodec``: schema-driven JSON via ``msgspec`` for typed decoding
"""

import collections
import datetime
import decimal
import fractions
import uuid
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, FrozenSet, Iterable, Iterator, TextIO, Union, get_args, get_origin

import jsonpickle
import msgspec
import structlog
from jsonpickle import tags
from jsonpickle.backend import json as json_backend
from jsonpickle.unpickler import Unpickler

from libs.common.metrics import measure_time

logger = structlog.get_logger("converters.codecs")

# Value types a jsonpickle payload may always name
SAFE_CLASSES = (
    bool, int, float, complex, str, list, tuple, dict, set, frozenset,
    datetime.date, datetime.datetime, datetime.time, datetime.timedelta, datetime.timezone,
    decimal.Decimal, fractions.Fraction, uuid.UUID,
    collections.OrderedDict, collections.deque,
)

_NAME_TAGS = (tags.OBJECT, tags.TYPE, tags.FUNCTION)
_MODULE_TAG = "py/mod"


class CodecError(Exception):
    """Base exception for codec operations."""
    pass


class CodecParseError(CodecError):
    """Input could not be decoded into the requested type."""
    pass


class CodecWriteError(CodecError):
    """Object could not be encoded."""
    pass


class Codec(ABC):
    """Abstract base class for JSON codecs."""

    @abstractmethod
    def decode(self, reader: TextIO, target_type: Any) -> Any:
        """Decode the whole of ``reader`` into an instance of ``target_type``.

        Raises ``CodecParseError`` for malformed or non-conforming input.
        """
        pass

    @abstractmethod
    def encode(self, obj: Any, target_type: Any, writer: TextIO) -> None:
        """Encode ``obj`` declared as ``target_type`` into ``writer``.

        Raises ``CodecWriteError`` when ``obj`` cannot be serialized.
        """
        pass


def _type_name(target_type: Any) -> str:
    return getattr(target_type, "__qualname__", None) or repr(target_type)


def _conform(value: Any, target_type: Any) -> Any:
    """Check ``value`` against ``target_type``, widening ints for float targets."""
    if value is None or target_type in (None, object, Any):
        return value
    origin = get_origin(target_type)
    if origin is Union:
        return value
    check_type = origin if origin is not None else target_type
    if not isinstance(check_type, type):
        return value
    if check_type is float and isinstance(value, int) and not isinstance(value, bool):
        return float(value)
    if not isinstance(value, check_type):
        raise CodecParseError(
            f"Expected {_type_name(target_type)} but got {type(value).__qualname__}"
        )
    return value


def _qualified_name(cls: Any) -> str:
    return f"{cls.__module__}.{cls.__qualname__}"


def _named_classes(target_type: Any) -> Iterator[type]:
    """Classes a value of ``target_type`` may legitimately be tagged with."""
    if isinstance(target_type, type) and target_type is not object:
        yield target_type
    origin = get_origin(target_type)
    if isinstance(origin, type):
        yield origin
    for arg in get_args(target_type):
        yield from _named_classes(arg)


class JsonPickleCodec(Codec):
    """Type-preserving codec backed by ``jsonpickle``.

    Parameters
    - keys: Preserve non-string dictionary keys
    - make_refs: Encode repeated/self references as ``py/id`` links
    - safe: Refuse to evaluate ``py/repr`` payloads when decoding
    - classes: Classes (or callables) a payload may name besides the target
      type and a small set of standard library value types

    ``target_type`` does not steer encoding: jsonpickle always records the
    runtime type, so a value can be decoded without knowing it in advance.

    Decoding only restores names that are allowed. Every ``py/object``,
    ``py/type`` and ``py/function`` tag (including those reached through
    ``py/reduce`` and ``json://`` dictionary keys) must name the target type,
    one of its type arguments, a configured class or a value type from
    ``SAFE_CLASSES``. ``py/mod`` is never restored. A payload naming anything
    else is rejected with ``CodecParseError`` before jsonpickle runs.
    """

    def __init__(
        self,
        keys: bool = True,
        make_refs: bool = True,
        safe: bool = True,
        classes: Iterable[Any] = (),
    ):
        self.keys = keys
        self.make_refs = make_refs
        self.safe = safe
        self.classes = tuple(classes)
        self._allowed_names = frozenset(
            _qualified_name(cls) for cls in SAFE_CLASSES + self.classes
        )

    def decode(self, reader: TextIO, target_type: Any) -> Any:
        text = reader.read()
        try:
            data = json_backend.decode(text)
            allowed = self._allowed_names | {_qualified_name(cls) for cls in _named_classes(target_type)}
            self._check_tags(data, allowed)
            value = Unpickler(keys=self.keys, safe=self.safe).restore(data)
        except (CodecParseError, MemoryError):
            raise
        except RecursionError as e:
            raise CodecParseError("JSON is nested too deeply") from e
        except Exception as e:
            raise CodecParseError(str(e) or type(e).__name__) from e
        return _conform(value, target_type)

    def encode(self, obj: Any, target_type: Any, writer: TextIO) -> None:
        try:
            text = jsonpickle.encode(obj, keys=self.keys, make_refs=self.make_refs)
        except MemoryError:
            raise
        except RecursionError as e:
            raise CodecWriteError("Object graph is nested too deeply") from e
        except Exception as e:
            raise CodecWriteError(str(e) or type(e).__name__) from e
        writer.write(text)

    def _check_tags(self, node: Any, allowed: FrozenSet[str]) -> None:
        if isinstance(node, list):
            for item in node:
                self._check_tags(item, allowed)
            return
        if not isinstance(node, dict):
            return
        for key, value in node.items():
            if key == _MODULE_TAG or (key == tags.REPR and self.safe):
                raise CodecParseError(f"Refusing to decode {key} tag")
            if key in _NAME_TAGS and (not isinstance(value, str) or value not in allowed):
                logger.warning("Rejected JSON type tag", tag=key, name=str(value))
                raise CodecParseError(f"Refusing to decode {key} {value!r}: not an allowed class")
            if self.keys and isinstance(key, str) and key.startswith(tags.JSON_KEY):
                self._check_tags(json_backend.decode(key[len(tags.JSON_KEY):]), allowed)
            self._check_tags(value, allowed)


class MsgspecCodec(Codec):
    """Schema-driven codec backed by ``msgspec.json``.

    Decoding validates against ``target_type`` (dataclasses, ``msgspec.Struct``,
    typing generics). Output is plain JSON without type tags.
    """

    def decode(self, reader: TextIO, target_type: Any) -> Any:
        decode_type = Any if target_type in (None, object) else target_type
        try:
            return msgspec.json.decode(reader.read(), type=decode_type)
        except MemoryError:
            raise
        except Exception as e:
            # Includes errors raised by __post_init__ of the target type
            raise CodecParseError(str(e) or type(e).__name__) from e

    def encode(self, obj: Any, target_type: Any, writer: TextIO) -> None:
        try:
            data = msgspec.json.encode(obj)
        except MemoryError:
            raise
        except Exception as e:
            raise CodecWriteError(str(e) or type(e).__name__) from e
        writer.write(data.decode("utf-8"))


class CodecType(Enum):
    """Supported codec types."""
    JSONPICKLE = "jsonpickle"
    MSGSPEC = "msgspec"


class CodecFactory:
    """Factory for creating codec instances."""

    @staticmethod
    @measure_time("create_codec")
    def create(codec_type: Union[CodecType, str], **kwargs: Any) -> Codec:
        """Create a codec.

        Parameters
        - codec_type: A ``CodecType`` or its string value (case-insensitive)
        - kwargs: Forwarded to the codec constructor
        """
        if isinstance(codec_type, str):
            try:
                codec_type = CodecType(codec_type.strip().lower())
            except ValueError:
                raise ValueError(f"Unsupported codec type: {codec_type}") from None

        if codec_type == CodecType.JSONPICKLE:
            codec: Codec = JsonPickleCodec(**kwargs)
        elif codec_type == CodecType.MSGSPEC:
            codec = MsgspecCodec(**kwargs)
        else:
            raise ValueError(f"Unsupported codec type: {codec_type}")

        logger.debug("Created codec", codec_type=codec_type.value)
        return codec
