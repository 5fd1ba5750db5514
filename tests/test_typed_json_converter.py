"""Tests for the typed JSON message converter."""

import gc
import io
import json
from dataclasses import dataclass
from typing import Any, List

import pytest
from prometheus_client import CollectorRegistry
from libs.common.metrics import MetricsCollector
from libs.converters.base import (
    ConfigurationError,
    MessageNotReadableError,
    MessageNotWritableError,
)
from libs.converters.codecs import Codec, CodecParseError, CodecWriteError, JsonPickleCodec
from libs.converters.http import HttpHeaders, HttpInputMessage, HttpOutputMessage
from libs.converters.media_type import (
    ALL,
    MT_JSON,
    MT_JSON_PLUS,
    MT_YAGSON,
    MediaType,
)
from libs.converters.typed_json import TypedJsonMessageConverter, resolve_charset


@dataclass
class Order:
    id: int
    items: List[str]


class RecordingBody(io.BytesIO):
    """Body stream that records ``close`` instead of discarding its content."""

    close_called = False

    def close(self):
        self.close_called = True


class TextCodec(Codec):
    """Codec passing text through unchanged."""

    def decode(self, reader, target_type):
        return reader.read()

    def encode(self, obj, target_type, writer):
        writer.write(obj)


class FailingCodec(Codec):
    """Codec failing every call with its own error types."""

    def decode(self, reader, target_type):
        raise CodecParseError("Unexpected token at line 1 column 3")

    def encode(self, obj, target_type, writer):
        writer.write("{")
        raise CodecWriteError("Cannot serialize field 'secret'")


def _input(data: bytes, content_type: str = None) -> HttpInputMessage:
    headers = HttpHeaders()
    if content_type is not None:
        headers["Content-Type"] = content_type
    return HttpInputMessage(body=RecordingBody(data), headers=headers)


def _output(content_type: str = None) -> HttpOutputMessage:
    headers = HttpHeaders()
    if content_type is not None:
        headers["Content-Type"] = content_type
    return HttpOutputMessage(body=RecordingBody(), headers=headers)


class TestConstruction:
    """Tests for supported media type setup."""

    def test_default_is_dedicated_yagson(self):
        converter = TypedJsonMessageConverter()
        assert converter.supported_media_types == (MT_YAGSON,)
        assert isinstance(converter.codec, JsonPickleCodec)

    def test_replace_mode(self):
        converter = TypedJsonMessageConverter.replacing_json_converters()
        assert converter.supported_media_types == (MT_JSON, MT_JSON_PLUS, MT_YAGSON)
        assert TypedJsonMessageConverter.for_json(False).supported_media_types == (MT_YAGSON,)

    def test_media_type_objects_kept_as_given(self):
        """Typed media types are stored without charset defaulting."""
        vendor = MediaType("application", "vnd.acme")
        converter = TypedJsonMessageConverter(vendor, MT_JSON_PLUS)
        assert converter.supported_media_types[0] == vendor
        assert converter.supported_media_types[0].charset is None
        assert converter.supported_media_types[1] == MT_JSON_PLUS

    def test_string_media_types_get_default_charset(self):
        converter = TypedJsonMessageConverter(
            "application/vnd.acme+json",
            "application/x-foo",
            "text/x-bar; charset=ISO-8859-1",
        )
        default, foo, bar = converter.supported_media_types
        assert default == MediaType.parse("application/vnd.acme+json;charset=UTF-8")
        assert foo.charset == "UTF-8"
        assert bar.charset == "ISO-8859-1"

    @pytest.mark.parametrize("default_type", [
        "*/*",
        "application/*",
        "application/*+json",
        MT_JSON_PLUS,
        ALL,
    ])
    def test_wildcard_default_rejected(self, default_type):
        with pytest.raises(ConfigurationError, match="must not contain wildcards"):
            TypedJsonMessageConverter(default_type, MT_JSON)

    def test_extras_without_default_rejected(self):
        with pytest.raises(ConfigurationError):
            TypedJsonMessageConverter(None, MT_JSON)

    def test_codec_can_be_replaced(self):
        converter = TypedJsonMessageConverter()
        codec = TextCodec()
        converter.codec = codec
        assert converter.codec is codec
        assert converter.read(str, _input(b"plain")) == "plain"
        with pytest.raises(ValueError):
            converter.codec = None


class TestMediaTypeChecks:
    """Tests for can_read / can_write."""

    def test_supports_every_class(self):
        converter = TypedJsonMessageConverter()
        for cls in (int, str, object, Order, type(None)):
            assert converter.supports(cls)

    def test_dedicated_mode(self):
        converter = TypedJsonMessageConverter()
        assert converter.can_write(str, MediaType.parse("application/yagson"))
        assert not converter.can_write(str, MediaType.parse("text/plain"))
        assert converter.can_read(str, MediaType.parse("application/yagson;charset=ISO-8859-1"))
        assert not converter.can_read(str, MediaType.parse("application/json"))

    def test_absent_media_type_is_acceptable(self):
        converter = TypedJsonMessageConverter()
        assert converter.can_read(str, None)
        assert converter.can_write(str, None)
        assert converter.can_read_generic(List[int], None, None)
        assert converter.can_write_generic(List[int], list, None)

    def test_replace_mode_wildcard_subtype(self):
        converter = TypedJsonMessageConverter.replacing_json_converters()
        vendor = MediaType.parse("application/vnd.api+json")
        assert converter.can_read(int, vendor)
        assert converter.can_read_generic(int, None, vendor)
        assert converter.can_write_generic(int, int, vendor)
        assert converter.can_read(int, MediaType.parse("application/yagson"))
        assert not converter.can_read(int, MediaType.parse("text/plain"))

    @pytest.mark.parametrize("media_type", [
        "application/json",
        "application/vnd.api+json",
        "application/*",
        "*/*",
        "text/plain",
        "application/xml",
    ])
    def test_read_and_write_agree(self, media_type):
        converter = TypedJsonMessageConverter.replacing_json_converters()
        parsed = MediaType.parse(media_type)
        assert converter.can_read(Order, parsed) == converter.can_write(Order, parsed)
        assert converter.can_read_generic(Order, None, parsed) == converter.can_write_generic(Order, Order, parsed)


class TestCharsetResolution:
    """Tests for charset selection."""

    def test_charset_from_content_type(self):
        headers = HttpHeaders({"content-type": "application/yagson; charset=ISO-8859-1"})
        assert resolve_charset(headers) == "ISO-8859-1"

    def test_default_charset(self):
        assert resolve_charset(HttpHeaders()) == "UTF-8"
        assert resolve_charset(None) == "UTF-8"
        assert resolve_charset(HttpHeaders({"content-type": "application/yagson"})) == "UTF-8"

    def test_plain_mapping(self):
        assert resolve_charset({"Content-Type": "application/json;charset=UTF-16"}) == "UTF-16"

    def test_read_uses_header_charset(self):
        converter = TypedJsonMessageConverter()
        data = '"café"'.encode("iso-8859-1")
        message = _input(data, "application/yagson; charset=ISO-8859-1")
        assert converter.read(str, message) == "café"

    def test_read_with_wrong_charset(self):
        converter = TypedJsonMessageConverter()
        data = '"café"'.encode("iso-8859-1")
        with pytest.raises(MessageNotReadableError):
            converter.read(str, _input(data, "application/yagson"))

    def test_write_uses_header_charset(self):
        converter = TypedJsonMessageConverter(codec=TextCodec())
        message = _output("application/yagson; charset=ISO-8859-1")
        converter.write("café", None, message)
        assert message.body.getvalue() == "café".encode("iso-8859-1")

    def test_write_unencodable_text(self):
        converter = TypedJsonMessageConverter(codec=TextCodec())
        message = _output("application/yagson; charset=US-ASCII")
        with pytest.raises(MessageNotWritableError):
            converter.write("café", None, message)


class TestReadWrite:
    """Tests for decode/encode delegation."""

    def test_round_trip(self):
        converter = TypedJsonMessageConverter()
        order = Order(7, ["book", "pen"])

        output = _output()
        converter.write_generic(order, Order, None, output)
        assert output.headers["content-type"] == "application/yagson;charset=UTF-8"
        assert output.body.close_called

        input_message = _input(output.body.getvalue(), output.headers["content-type"])
        assert converter.read_generic(Order, None, input_message) == order
        assert input_message.body.close_called

    def test_round_trip_non_default_charset(self):
        converter = TypedJsonMessageConverter()
        output = _output("application/yagson;charset=UTF-16")
        converter.write({"name": "café"}, None, output)

        input_message = _input(output.body.getvalue(), "application/yagson;charset=UTF-16")
        assert converter.read(dict, input_message) == {"name": "café"}

    def test_explicit_content_type_wins(self):
        converter = TypedJsonMessageConverter()
        output = _output("application/vnd.custom+json")
        converter.write(Order(1, []), MT_YAGSON, output)
        assert output.headers["content-type"] == "application/vnd.custom+json"

    def test_negotiated_content_type_gets_charset(self):
        converter = TypedJsonMessageConverter.replacing_json_converters()
        output = _output()
        converter.write_generic([1, 2], List[int], MediaType.parse("application/vnd.api+json"), output)
        assert output.headers["content-type"] == "application/vnd.api+json;charset=UTF-8"

    def test_wildcard_content_type_falls_back_to_default(self):
        converter = TypedJsonMessageConverter.replacing_json_converters()
        output = _output()
        converter.write_generic([1, 2], List[int], ALL, output)
        assert output.headers["content-type"] == "application/json;charset=UTF-8"

    def test_write_internal_uses_object_type(self):
        seen = []

        class SpyCodec(TextCodec):
            def encode(self, obj, target_type, writer):
                seen.append(target_type)
                super().encode(obj, target_type, writer)

        converter = TypedJsonMessageConverter(codec=SpyCodec())
        converter.write("x", None, _output())
        converter.write_generic("y", str, None, _output())
        assert seen == [object, str]

    def test_wrong_type_not_readable(self):
        converter = TypedJsonMessageConverter()
        with pytest.raises(MessageNotReadableError, match="Expected Order"):
            converter.read(Order, _input(b'"just text"'))


class TestErrorTranslation:
    """Tests for codec error translation."""

    def test_parse_error_becomes_not_readable(self):
        converter = TypedJsonMessageConverter(codec=FailingCodec())
        message = _input(b"{}")
        with pytest.raises(MessageNotReadableError) as exc_info:
            converter.read(Order, message)

        error = exc_info.value
        assert "Unexpected token at line 1 column 3" in str(error)
        assert str(error).startswith("Could not read JSON: ")
        assert isinstance(error.cause, CodecParseError)
        assert error.__cause__ is error.cause
        assert message.body.close_called

    def test_write_error_becomes_not_writable(self):
        converter = TypedJsonMessageConverter(codec=FailingCodec())
        output = _output()
        with pytest.raises(MessageNotWritableError) as exc_info:
            converter.write_generic(Order(1, []), Order, None, output)

        error = exc_info.value
        assert "Cannot serialize field 'secret'" in str(error)
        assert isinstance(error.__cause__, CodecWriteError)
        # The caller owns the stream on failure
        assert not output.body.close_called
        assert not output.body.closed

    def test_payload_naming_functions_not_readable(self, tmp_path):
        """Test a py/reduce body is refused without running the named function."""
        marker = tmp_path / "marker"
        body = json.dumps({
            "py/reduce": [{"py/function": "builtins.open"}, {"py/tuple": [str(marker), "w"]}],
        }).encode("utf-8")
        converter = TypedJsonMessageConverter()
        with pytest.raises(MessageNotReadableError, match="builtins.open") as exc_info:
            converter.read(object, _input(body, "application/yagson"))
        assert isinstance(exc_info.value.cause, CodecParseError)
        assert not marker.exists()

    def test_unexpected_codec_error_leaves_stream_open(self):
        """Test the caller keeps its stream when a codec fails unexpectedly."""
        class BrokenCodec(TextCodec):
            def encode(self, obj, target_type, writer):
                writer.write("{")
                raise RuntimeError("codec bug")

        converter = TypedJsonMessageConverter(codec=BrokenCodec())
        output = _output()
        with pytest.raises(RuntimeError, match="codec bug"):
            converter.write("x", None, output)
        gc.collect()

        assert not output.body.close_called
        assert output.body.getvalue() == b"{"

    def test_malformed_json_not_readable(self):
        converter = TypedJsonMessageConverter()
        with pytest.raises(MessageNotReadableError, match="Could not read JSON"):
            converter.read(Any, _input(b"{not json", "application/yagson"))


class TestMetrics:
    """Tests for metrics recording."""

    def test_success_and_failure_recorded(self):
        metrics = MetricsCollector("test-service", registry=CollectorRegistry())
        converter = TypedJsonMessageConverter(metrics=metrics)

        converter.read(list, _input(b"[1]", "application/yagson"))
        with pytest.raises(MessageNotReadableError):
            converter.read(list, _input(b"[", "application/yagson"))
        converter.write([1], None, _output())

        text = metrics.get_metrics()
        assert 'converter_messages_total{direction="read",media_type="application/yagson",outcome="success"} 1.0' in text
        assert 'converter_messages_total{direction="read",media_type="application/yagson",outcome="error"} 1.0' in text
        assert 'converter_messages_total{direction="write",media_type="application/yagson",outcome="success"} 1.0' in text
