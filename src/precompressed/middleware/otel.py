"""OpenTelemetry tracing and metrics for static asset responses.

Creates an HTTP server span per request and records which content encoding
each response was sent with, so the share of traffic served from
precompressed variants is visible.

Install with: uv add "precompressed[otel]"
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from precompressed.rsgi import (
        HTTPProtocol,
        HTTPScope,
        HTTPStreamTransport,
        Middleware,
        RSGIHTTPHandler,
    )

try:
    from opentelemetry import metrics, trace
    from opentelemetry.propagate import extract
    from opentelemetry.trace import (
        SpanKind,
        StatusCode,
        TracerProvider,
    )
except ImportError as e:
    msg = (
        "OpenTelemetry middleware requires the 'otel' extra. "
        "Install with: uv add 'precompressed[otel]'"
    )
    raise ImportError(msg) from e


class _TracingHTTPProtocol:
    """Wraps HTTPProtocol to capture the response status and content encoding."""

    __slots__ = ("_encoding", "_proto", "_status")

    def __init__(self, proto: HTTPProtocol) -> None:
        self._proto = proto
        self._status: int | None = None
        self._encoding: str | None = None

    def _capture(self, status: int, headers: list[tuple[str, str]]) -> None:
        self._status = status
        for name, value in headers:
            if name.lower() == "content-encoding":
                self._encoding = value
                break

    async def __call__(self) -> bytes:
        return await self._proto()

    def __aiter__(self) -> bytes:
        return self._proto.__aiter__()

    async def client_disconnect(self) -> None:
        await self._proto.client_disconnect()

    def response_empty(self, status: int, headers: list[tuple[str, str]]) -> None:
        self._capture(status, headers)
        self._proto.response_empty(status, headers)

    def response_str(
        self, status: int, headers: list[tuple[str, str]], body: str
    ) -> None:
        self._capture(status, headers)
        self._proto.response_str(status, headers, body)

    def response_bytes(
        self, status: int, headers: list[tuple[str, str]], body: bytes
    ) -> None:
        self._capture(status, headers)
        self._proto.response_bytes(status, headers, body)

    def response_file(
        self, status: int, headers: list[tuple[str, str]], file: str
    ) -> None:
        self._capture(status, headers)
        self._proto.response_file(status, headers, file)

    def response_file_range(
        self,
        status: int,
        headers: list[tuple[str, str]],
        file: str,
        start: int,
        end: int,
    ) -> None:
        self._capture(status, headers)
        self._proto.response_file_range(status, headers, file, start, end)

    def response_stream(
        self, status: int, headers: list[tuple[str, str]]
    ) -> HTTPStreamTransport:
        self._capture(status, headers)
        return self._proto.response_stream(status, headers)


_DURATION_BUCKETS = (
    0.001,
    0.005,
    0.01,
    0.025,
    0.05,
    0.075,
    0.1,
    0.25,
    0.5,
    0.75,
    1.0,
    2.5,
    5.0,
)


def otel(
    *,
    tracer_provider: TracerProvider | None = None,
    meter_provider: metrics.MeterProvider | None = None,
) -> Middleware:
    """Create OpenTelemetry tracing and metrics middleware.

    Extracts trace context from incoming request headers (e.g. ``traceparent``).
    Only depends on ``opentelemetry-api``; users bring their own SDK and
    exporters.

    Metrics emitted:
        - ``http.server.request.duration`` (histogram, seconds)
        - ``static_files.responses`` (counter, by ``http.response.content_encoding``;
          ``identity`` when sent uncompressed)

    Args:
        tracer_provider: Optional TracerProvider. If None, uses the global provider.
        meter_provider: Optional MeterProvider. If None, uses the global provider.

    Example:
        app = otel()(static_files(Path("./dist"), options={"enable_brotli": True}))
    """
    tracer = trace.get_tracer(
        "precompressed",
        tracer_provider=tracer_provider,
    )
    meter = metrics.get_meter(
        "precompressed",
        meter_provider=meter_provider,
    )
    duration_histogram = meter.create_histogram(
        "http.server.request.duration",
        unit="s",
        description="Duration of HTTP server requests.",
        explicit_bucket_boundaries_advisory=_DURATION_BUCKETS,
    )
    responses_counter = meter.create_counter(
        "static_files.responses",
        unit="{response}",
        description="Static file responses by content encoding.",
    )

    def middleware(handler: RSGIHTTPHandler) -> RSGIHTTPHandler:
        async def traced_handler(scope: HTTPScope, proto: HTTPProtocol) -> None:
            ctx = extract(scope.headers)
            method = scope.method
            attributes: dict[str, str | int] = {
                "http.request.method": method,
                "url.path": scope.path,
                "url.scheme": scope.scheme,
            }
            accept_encoding = scope.headers.get("accept-encoding")
            if accept_encoding is not None:
                attributes["http.request.header.accept_encoding"] = accept_encoding

            start = time.perf_counter()
            with tracer.start_as_current_span(
                f"{method} {scope.path}",
                context=ctx,
                kind=SpanKind.SERVER,
                attributes=attributes,
                record_exception=True,
                set_status_on_exception=True,
            ) as span:
                wrapped_proto = _TracingHTTPProtocol(proto)
                try:
                    await handler(scope, wrapped_proto)
                finally:
                    duration = time.perf_counter() - start
                    metric_attrs: dict[str, str | int] = {
                        "http.request.method": method,
                    }
                    status = wrapped_proto._status
                    if status is not None:
                        span.set_attribute("http.response.status_code", status)
                        metric_attrs["http.response.status_code"] = status
                        if status >= 500:
                            span.set_status(StatusCode.ERROR)
                    if wrapped_proto._encoding is not None:
                        span.set_attribute(
                            "http.response.content_encoding", wrapped_proto._encoding
                        )
                    duration_histogram.record(duration, metric_attrs)
                    if status is not None and status < 300:
                        responses_counter.add(
                            1,
                            {
                                "http.response.content_encoding": (
                                    wrapped_proto._encoding or "identity"
                                )
                            },
                        )

        return traced_handler

    return middleware
