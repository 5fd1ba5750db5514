"""FastAPI integration for message converters.

Wires a ``TypedJsonMessageConverter`` into request handling:

- ``install_converter(app, converter)`` stores the converter on
  ``app.state`` and maps conversion errors to HTTP responses
- ``message_body(SomeType)`` is a dependency reading the request body
- ``negotiated_response(request, obj)`` renders a response for the client's
  ``Accept`` header

Example
>>> app = FastAPI()
>>> install_converter(app, TypedJsonMessageConverter.replacing_json_converters())
>>> @app.post("/orders")
... async def create(request: Request, order: Order = Depends(message_body(Order))):
...     return negotiated_response(request, order, Order, status_code=201)
"""

import io
import time
from typing import Any, Awaitable, Callable, Mapping, Optional, Tuple

import structlog
from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse
from starlette.background import BackgroundTask
from starlette.responses import Response

from libs.common.metrics import MetricsCollector
from .base import (
    MessageNotReadableError,
    MessageNotWritableError,
    media_types_to_str,
)
from .http import HttpHeaders, HttpInputMessage, HttpOutputMessage
from .media_type import InvalidMediaTypeError, MediaType, sort_by_specificity
from .typed_json import TypedJsonMessageConverter

logger = structlog.get_logger("converters.web")


class _CapturedBody(io.BytesIO):
    """In-memory body that keeps its bytes after the converter closes it."""

    captured = b""

    def close(self) -> None:
        if not self.closed:
            self.captured = self.getvalue()
        super().close()

    def content(self) -> bytes:
        return self.captured if self.closed else self.getvalue()


class ConverterResponse(Response):
    """Response whose body is rendered by a message converter.

    Parameters
    - content: Object to serialize
    - converter: Converter doing the rendering
    - target_type: Declared type of ``content``
    - media_type: Negotiated media type; ``None`` selects the converter default
    - headers: Extra headers; an explicit ``content-type`` wins over negotiation
    """

    def __init__(
        self,
        content: Any,
        converter: TypedJsonMessageConverter,
        target_type: Any = object,
        media_type: Optional[MediaType] = None,
        status_code: int = 200,
        headers: Optional[Mapping[str, str]] = None,
        background: Optional[BackgroundTask] = None,
    ):
        body = _CapturedBody()
        output_message = HttpOutputMessage(body=body, headers=HttpHeaders(headers=dict(headers or {})))
        converter.write_generic(content, target_type, media_type, output_message)
        super().__init__(
            content=body.content(),
            status_code=status_code,
            headers=dict(output_message.headers),
            background=background,
        )


def install_converter(
    app: FastAPI,
    converter: TypedJsonMessageConverter,
    metrics: Optional[MetricsCollector] = None,
) -> None:
    """Attach ``converter`` to ``app`` and register error handlers.

    When ``metrics`` is given, every HTTP request is recorded as well.
    """
    app.state.message_converter = converter
    register_exception_handlers(app)

    if metrics is not None:
        @app.middleware("http")
        async def converter_metrics_middleware(request: Request, call_next):
            """Collect metrics for HTTP requests."""
            start_time = time.time()
            response = await call_next(request)
            metrics.record_http_request(
                method=request.method,
                endpoint=request.url.path,
                status=response.status_code,
                duration=time.time() - start_time,
            )
            return response

    logger.info(
        "Message converter installed",
        supported_media_types=media_types_to_str(converter.supported_media_types),
    )


def get_converter(app: FastAPI) -> TypedJsonMessageConverter:
    converter = getattr(app.state, "message_converter", None)
    if converter is None:
        raise RuntimeError("No message converter installed; call install_converter(app, converter)")
    return converter


async def _message_not_readable_handler(request: Request, exc: MessageNotReadableError) -> JSONResponse:
    logger.info("Rejected unreadable request body", path=request.url.path, error=exc.message)
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "Message not readable", "detail": exc.message},
    )


async def _message_not_writable_handler(request: Request, exc: MessageNotWritableError) -> JSONResponse:
    logger.error("Response body could not be written", path=request.url.path, error=exc.message)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Message not writable", "detail": exc.message},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Map conversion errors to 400 (unreadable) and 500 (unwritable)."""
    app.add_exception_handler(MessageNotReadableError, _message_not_readable_handler)
    app.add_exception_handler(MessageNotWritableError, _message_not_writable_handler)


def message_body(target_type: Any = object) -> Callable[[Request], Awaitable[Any]]:
    """Dependency factory reading the request body as ``target_type``.

    Responds 415 when the request Content-Type is malformed or not supported
    by the installed converter.
    """

    async def read_message_body(request: Request) -> Any:
        converter = get_converter(request.app)
        headers = HttpHeaders(raw=list(request.headers.raw))
        try:
            content_type = headers.content_type
        except InvalidMediaTypeError as e:
            raise HTTPException(status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE, detail=str(e)) from e

        if not converter.can_read_generic(target_type, None, content_type):
            raise HTTPException(
                status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
                detail=f"Content type '{content_type}' not supported; "
                       f"supported: {media_types_to_str(converter.supported_media_types)}",
            )

        body = await request.body()
        input_message = HttpInputMessage(body=io.BytesIO(body), headers=headers)
        return converter.read_generic(target_type, None, input_message)

    return read_message_body


def _without_quality(media_type: MediaType) -> MediaType:
    params = {name: value for name, value in media_type.parameters.items() if name != "q"}
    return MediaType(media_type.type, media_type.subtype, params)


def _more_specific(requested: MediaType, producible: MediaType) -> MediaType:
    if requested.is_concrete:
        return _without_quality(requested)
    if producible.is_concrete:
        return producible
    if requested.is_wildcard_type:
        return producible
    return _without_quality(requested)


def select_media_type(
    accept: Optional[str],
    converter: TypedJsonMessageConverter,
) -> Tuple[Optional[MediaType], bool]:
    """Pick the response media type for an ``Accept`` header.

    Returns ``(media_type, acceptable)``. ``media_type`` is ``None`` when the
    converter default should apply; ``acceptable`` is ``False`` when nothing
    the converter produces satisfies the header.
    """
    if not accept or not accept.strip():
        return None, True
    try:
        requested_types = sort_by_specificity(MediaType.parse_list(accept))
    except InvalidMediaTypeError as e:
        logger.info("Ignoring malformed Accept header", accept=accept, error=str(e))
        return None, False

    compatible_found = False
    for requested in requested_types:
        if requested.quality <= 0:
            continue
        for producible in converter.supported_media_types:
            if not requested.is_compatible_with(producible):
                continue
            compatible_found = True
            candidate = _more_specific(requested, producible)
            if candidate.is_concrete:
                return candidate, True

    return None, compatible_found


def negotiated_response(
    request: Request,
    content: Any,
    target_type: Any = object,
    status_code: int = 200,
    headers: Optional[Mapping[str, str]] = None,
) -> ConverterResponse:
    """Render ``content`` in the best media type the client accepts.

    Raises ``HTTPException(406)`` when no supported media type is acceptable.
    """
    converter = get_converter(request.app)
    media_type, acceptable = select_media_type(request.headers.get("accept"), converter)
    if not acceptable or not converter.can_write_generic(target_type, None, media_type):
        raise HTTPException(
            status_code=status.HTTP_406_NOT_ACCEPTABLE,
            detail=f"Acceptable representations: {media_types_to_str(converter.supported_media_types)}",
        )
    return ConverterResponse(
        content,
        converter,
        target_type=target_type,
        media_type=media_type,
        status_code=status_code,
        headers=headers,
    )
