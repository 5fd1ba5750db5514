"""Tests for the FastAPI integration."""

import json
from dataclasses import dataclass

import jsonpickle
import pytest
from fastapi import Depends, FastAPI, Request
from fastapi.testclient import TestClient
from prometheus_client import CollectorRegistry
from libs.common.metrics import MetricsCollector
from libs.converters.codecs import Codec, CodecWriteError
from libs.converters.media_type import MT_JSON, MediaType
from libs.converters.typed_json import TypedJsonMessageConverter
from libs.converters.web import (
    ConverterResponse,
    get_converter,
    install_converter,
    message_body,
    negotiated_response,
    select_media_type,
)


@dataclass
class Order:
    id: int
    item: str


class UnwritableCodec(Codec):
    """Codec that can read plain JSON but never write."""

    def decode(self, reader, target_type):
        return jsonpickle.decode(reader.read())

    def encode(self, obj, target_type, writer):
        raise CodecWriteError("Cannot serialize Order")


def create_app(converter: TypedJsonMessageConverter, metrics: MetricsCollector = None) -> FastAPI:
    app = FastAPI()
    install_converter(app, converter, metrics=metrics)

    @app.post("/orders")
    async def create_order(request: Request, order: Order = Depends(message_body(Order))):
        return negotiated_response(request, order, Order, status_code=201)

    @app.get("/orders/{order_id}")
    async def get_order(request: Request, order_id: int):
        return negotiated_response(request, Order(order_id, "widget"), Order)

    return app


@pytest.fixture
def client():
    """Client for an app with a dedicated application/yagson converter."""
    return TestClient(create_app(TypedJsonMessageConverter()))


@pytest.fixture
def json_client():
    """Client for an app whose converter replaces all JSON converters."""
    return TestClient(create_app(TypedJsonMessageConverter.replacing_json_converters()))


class TestRequestBodies:
    """Tests for reading request bodies."""

    def test_create_order(self, client):
        body = jsonpickle.encode(Order(1, "widget"))
        response = client.post(
            "/orders",
            content=body,
            headers={"Content-Type": "application/yagson", "Accept": "application/yagson"},
        )
        assert response.status_code == 201
        assert response.headers["content-type"] == "application/yagson;charset=UTF-8"
        assert jsonpickle.decode(response.text) == Order(1, "widget")

    def test_unsupported_content_type(self, client):
        response = client.post("/orders", content="{}", headers={"Content-Type": "text/plain"})
        assert response.status_code == 415
        assert "application/yagson" in response.json()["detail"]

    def test_malformed_content_type(self, client):
        response = client.post("/orders", content="{}", headers={"Content-Type": "nonsense"})
        assert response.status_code == 415

    def test_malformed_body(self, client):
        response = client.post("/orders", content="{oops", headers={"Content-Type": "application/yagson"})
        assert response.status_code == 400
        payload = response.json()
        assert payload["error"] == "Message not readable"
        assert payload["detail"].startswith("Could not read JSON")

    def test_body_of_wrong_type(self, client):
        response = client.post("/orders", content='"just text"', headers={"Content-Type": "application/yagson"})
        assert response.status_code == 400
        assert "Expected Order" in response.json()["detail"]

    def test_body_naming_functions_rejected(self, client, tmp_path):
        marker = tmp_path / "marker"
        body = json.dumps({
            "py/reduce": [{"py/function": "builtins.open"}, {"py/tuple": [str(marker), "w"]}],
        })
        response = client.post("/orders", content=body, headers={"Content-Type": "application/yagson"})
        assert response.status_code == 400
        assert "not an allowed class" in response.json()["detail"]
        assert not marker.exists()

    def test_vendor_json_in_replace_mode(self, json_client):
        body = jsonpickle.encode(Order(2, "gadget"))
        response = json_client.post(
            "/orders",
            content=body,
            headers={"Content-Type": "application/vnd.api+json", "Accept": "application/json"},
        )
        assert response.status_code == 201
        assert response.headers["content-type"] == "application/json;charset=UTF-8"


class TestResponses:
    """Tests for Accept negotiation and rendering."""

    def test_wildcard_accept_uses_default(self, client):
        response = client.get("/orders/3", headers={"Accept": "*/*"})
        assert response.status_code == 200
        assert response.headers["content-type"] == "application/yagson;charset=UTF-8"
        assert jsonpickle.decode(response.text) == Order(3, "widget")

    def test_not_acceptable(self, client):
        response = client.get("/orders/3", headers={"Accept": "text/html"})
        assert response.status_code == 406

    def test_vendor_accept_in_replace_mode(self, json_client):
        response = json_client.get("/orders/4", headers={"Accept": "application/vnd.api+json"})
        assert response.status_code == 200
        assert response.headers["content-type"] == "application/vnd.api+json;charset=UTF-8"

    def test_unwritable_body(self):
        client = TestClient(create_app(TypedJsonMessageConverter(codec=UnwritableCodec())))
        response = client.get("/orders/5", headers={"Accept": "application/yagson"})
        assert response.status_code == 500
        payload = response.json()
        assert payload["error"] == "Message not writable"
        assert "Cannot serialize Order" in payload["detail"]

    def test_converter_response_keeps_explicit_content_type(self):
        response = ConverterResponse(
            [1, 2],
            TypedJsonMessageConverter(),
            headers={"Content-Type": "application/yagson; charset=ISO-8859-1"},
        )
        assert response.headers["content-type"] == "application/yagson; charset=ISO-8859-1"
        assert response.body == b"[1, 2]"
        assert response.headers["content-length"] == "6"

    def test_request_metrics(self):
        metrics = MetricsCollector("test-service", registry=CollectorRegistry())
        client = TestClient(create_app(TypedJsonMessageConverter(metrics=metrics), metrics=metrics))
        client.get("/orders/6", headers={"Accept": "application/yagson"})

        text = metrics.get_metrics()
        assert 'endpoint="/orders/6"' in text
        assert 'converter_messages_total{direction="write",media_type="application/yagson",outcome="success"} 1.0' in text


class TestSelectMediaType:
    """Tests for Accept header negotiation."""

    def test_no_accept_header(self):
        converter = TypedJsonMessageConverter()
        assert select_media_type(None, converter) == (None, True)
        assert select_media_type("  ", converter) == (None, True)

    def test_quality_ordering(self):
        converter = TypedJsonMessageConverter.replacing_json_converters()
        media_type, acceptable = select_media_type("application/json;q=0.5, application/yagson", converter)
        assert acceptable
        assert str(media_type) == "application/yagson"

    def test_requested_parameters_kept_without_quality(self):
        converter = TypedJsonMessageConverter.replacing_json_converters()
        media_type, _ = select_media_type("application/json;charset=UTF-16;q=0.9", converter)
        assert media_type == MediaType.parse("application/json;charset=UTF-16")

    def test_wildcard_subtype_accept(self):
        converter = TypedJsonMessageConverter.replacing_json_converters()
        media_type, acceptable = select_media_type("application/*", converter)
        assert acceptable
        assert media_type == MT_JSON

    def test_zero_quality_excluded(self):
        converter = TypedJsonMessageConverter()
        assert select_media_type("application/yagson;q=0", converter) == (None, False)

    def test_malformed_accept(self):
        converter = TypedJsonMessageConverter()
        assert select_media_type("not a media type", converter) == (None, False)


def test_get_converter_requires_installation():
    with pytest.raises(RuntimeError):
        get_converter(FastAPI())
