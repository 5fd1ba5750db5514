"""Media type values used for content negotiation.

A ``MediaType`` is an immutable ``(type, subtype, parameters)`` triple as
carried by ``Content-Type`` and ``Accept`` headers. Besides parsing and
rendering it implements the two wildcard-aware relations converters need:

- ``includes``: one-directional (``application/*+json`` includes
  ``application/vnd.api+json`` but not the other way round)
- ``is_compatible_with``: symmetric, used for read/write checks and Accept
  negotiation

Typical usage
- ``MediaType.parse("application/json; charset=UTF-8")``
- ``MT_YAGSON.is_compatible_with(request_type)``
"""

import codecs
from typing import Dict, List, Mapping, Optional, Tuple

DEFAULT_CHARSET = "UTF-8"

WILDCARD = "*"

_TOKEN_SEPARATORS = set('()<>@,;:\\"/[]?={} \t')


class InvalidMediaTypeError(ValueError):
    """Raised when a media type string cannot be parsed."""

    def __init__(self, media_type: str, reason: str):
        super().__init__(f"Invalid media type {media_type!r}: {reason}")
        self.media_type = media_type
        self.reason = reason


def _check_token(value: str, what: str, source: str) -> None:
    if not value:
        raise InvalidMediaTypeError(source, f"{what} must not be empty")
    for char in value:
        if char in _TOKEN_SEPARATORS or ord(char) < 32 or ord(char) > 126:
            raise InvalidMediaTypeError(source, f"illegal character {char!r} in {what}")


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] == '"':
        return value[1:-1]
    return value


def _split_outside_quotes(text: str, separator: str) -> List[str]:
    """Split ``text`` on ``separator`` ignoring separators inside quotes."""
    parts = []
    current = []
    quoted = False
    escaped = False
    for char in text:
        if escaped:
            escaped = False
        elif char == "\\" and quoted:
            escaped = True
        elif char == '"':
            quoted = not quoted
        elif char == separator and not quoted:
            parts.append("".join(current))
            current = []
            continue
        current.append(char)
    parts.append("".join(current))
    return parts


class MediaType:
    """Immutable media type value.

    Parameters
    - type: Primary type, e.g. ``application`` (``*`` for wildcard)
    - subtype: Subtype, e.g. ``json``, ``*`` or ``*+json``
    - parameters: Optional mapping such as ``{"charset": "UTF-8"}``

    Type, subtype and parameter names are stored lower-cased; parameter
    values keep their case.
    """

    __slots__ = ("_type", "_subtype", "_parameters")

    def __init__(
        self,
        type: str,
        subtype: str = WILDCARD,
        parameters: Optional[Mapping[str, str]] = None,
        charset: Optional[str] = None,
    ):
        source = f"{type}/{subtype}"
        _check_token(type, "type", source)
        _check_token(subtype, "subtype", source)
        if type == WILDCARD and subtype != WILDCARD:
            raise InvalidMediaTypeError(source, "wildcard type is legal only in '*/*'")

        params: Dict[str, str] = {}
        for name, value in (parameters or {}).items():
            _check_token(name, "parameter name", source)
            params[name.lower()] = value
        if charset is not None:
            params["charset"] = charset
        if "charset" in params:
            charset_name = _unquote(params["charset"])
            try:
                codecs.lookup(charset_name)
            except LookupError:
                raise InvalidMediaTypeError(source, f"unsupported charset {charset_name!r}") from None

        self._type = type.lower()
        self._subtype = subtype.lower()
        self._parameters: Tuple[Tuple[str, str], ...] = tuple(params.items())

    @classmethod
    def parse(cls, text: str) -> "MediaType":
        """Parse a single media type such as ``text/html; charset=ISO-8859-1``."""
        if text is None or not text.strip():
            raise InvalidMediaTypeError(str(text), "media type must not be empty")

        parts = _split_outside_quotes(text, ";")
        full_type = parts[0].strip()
        if full_type == WILDCARD:
            full_type = "*/*"
        if "/" not in full_type:
            raise InvalidMediaTypeError(text, "does not contain '/'")
        type_, _, subtype = full_type.partition("/")
        if not subtype:
            raise InvalidMediaTypeError(text, "does not contain subtype after '/'")
        if "/" in subtype:
            raise InvalidMediaTypeError(text, "contains more than one '/'")

        parameters: Dict[str, str] = {}
        for raw in parts[1:]:
            raw = raw.strip()
            if not raw:
                continue
            if "=" not in raw:
                raise InvalidMediaTypeError(text, f"parameter {raw!r} has no value")
            name, _, value = raw.partition("=")
            name = name.strip()
            value = value.strip()
            if not value:
                raise InvalidMediaTypeError(text, f"parameter {name!r} has no value")
            parameters[name] = value

        try:
            return cls(type_.strip(), subtype.strip(), parameters)
        except InvalidMediaTypeError as exc:
            raise InvalidMediaTypeError(text, exc.reason) from None

    @classmethod
    def parse_list(cls, text: Optional[str]) -> List["MediaType"]:
        """Parse a comma-separated list, e.g. the value of an Accept header."""
        if not text or not text.strip():
            return []
        return [cls.parse(token) for token in _split_outside_quotes(text, ",") if token.strip()]

    @property
    def type(self) -> str:
        return self._type

    @property
    def subtype(self) -> str:
        return self._subtype

    @property
    def parameters(self) -> Dict[str, str]:
        return dict(self._parameters)

    def get_parameter(self, name: str) -> Optional[str]:
        """Return a parameter value (unquoted) by case-insensitive name."""
        name = name.lower()
        for key, value in self._parameters:
            if key == name:
                return _unquote(value)
        return None

    @property
    def charset(self) -> Optional[str]:
        return self.get_parameter("charset")

    @property
    def quality(self) -> float:
        """The ``q`` parameter, 1.0 when absent or unparseable."""
        value = self.get_parameter("q")
        if value is None:
            return 1.0
        try:
            return min(max(float(value), 0.0), 1.0)
        except ValueError:
            return 1.0

    @property
    def is_wildcard_type(self) -> bool:
        return self._type == WILDCARD

    @property
    def is_wildcard_subtype(self) -> bool:
        return self._subtype == WILDCARD or self._subtype.startswith("*+")

    @property
    def is_concrete(self) -> bool:
        return not self.is_wildcard_type and not self.is_wildcard_subtype

    @property
    def subtype_suffix(self) -> Optional[str]:
        """Structured syntax suffix, e.g. ``json`` for ``vnd.api+json``."""
        index = self._subtype.rfind("+")
        if index == -1 or index == len(self._subtype) - 1:
            return None
        return self._subtype[index + 1:]

    def with_charset(self, charset: str) -> "MediaType":
        """Return a copy whose ``charset`` parameter is ``charset``."""
        params = {name: value for name, value in self._parameters if name != "charset"}
        return MediaType(self._type, self._subtype, params, charset=charset)

    def includes(self, other: Optional["MediaType"]) -> bool:
        """Whether this (possibly wildcard) type includes ``other``.

        ``*/*`` includes everything; ``text/*`` includes ``text/plain``;
        ``application/*+json`` includes ``application/vnd.api+json``.
        """
        if other is None:
            return False
        if self.is_wildcard_type:
            return True
        if self._type != other._type:
            return False
        if self._subtype == other._subtype:
            return True
        if self.is_wildcard_subtype:
            plus = self._subtype.rfind("+")
            if plus == -1:
                return True
            other_suffix = other.subtype_suffix
            if other_suffix is not None:
                return self._subtype[:plus] == WILDCARD and self._subtype[plus + 1:] == other_suffix
        return False

    def is_compatible_with(self, other: Optional["MediaType"]) -> bool:
        """Symmetric wildcard-aware compatibility check."""
        if other is None:
            return False
        if self.is_wildcard_type or other.is_wildcard_type:
            return True
        if self._type != other._type:
            return False
        if self._subtype == other._subtype:
            return True
        if self.is_wildcard_subtype or other.is_wildcard_subtype:
            this_suffix = self.subtype_suffix
            other_suffix = other.subtype_suffix
            if self._subtype == WILDCARD or other._subtype == WILDCARD:
                return True
            if self.is_wildcard_subtype and this_suffix is not None:
                return this_suffix == other._subtype or this_suffix == other_suffix
            if other.is_wildcard_subtype and other_suffix is not None:
                return self._subtype == other_suffix or other_suffix == this_suffix
        return False

    def specificity_key(self) -> Tuple[float, int, int]:
        """Sort key putting preferred Accept entries first.

        Higher quality wins, then concrete over wildcard, then more
        parameters (excluding ``q``).
        """
        wildcards = int(self.is_wildcard_type) + int(self.is_wildcard_subtype)
        param_count = sum(1 for name, _ in self._parameters if name != "q")
        return (-self.quality, wildcards, -param_count)

    def _comparable(self) -> Tuple[str, str, Tuple[Tuple[str, str], ...]]:
        params = []
        for name, value in self._parameters:
            value = _unquote(value)
            if name == "charset":
                value = codecs.lookup(value).name
            params.append((name, value))
        return self._type, self._subtype, tuple(sorted(params))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MediaType):
            return NotImplemented
        return self._comparable() == other._comparable()

    def __hash__(self) -> int:
        return hash(self._comparable())

    def __str__(self) -> str:
        rendered = f"{self._type}/{self._subtype}"
        for name, value in self._parameters:
            rendered += f";{name}={value}"
        return rendered

    def __repr__(self) -> str:
        return f"MediaType({str(self)!r})"


def sort_by_specificity(media_types: List[MediaType]) -> List[MediaType]:
    """Return Accept entries ordered from most to least preferred (stable)."""
    return sorted(media_types, key=lambda media_type: media_type.specificity_key())


ALL = MediaType(WILDCARD, WILDCARD)

MT_YAGSON = MediaType("application", "yagson", charset=DEFAULT_CHARSET)
MT_JSON = MediaType("application", "json", charset=DEFAULT_CHARSET)
MT_JSON_PLUS = MediaType("application", "*+json", charset=DEFAULT_CHARSET)
