from __future__ import annotations

import uuid
from time import perf_counter
from typing import Any, Callable, Iterable

import structlog
from starlette.datastructures import MutableHeaders

from webmetrics.observability.publisher import WebMetricsPublisher
from webmetrics.observability.tags import exception_tag, host_tag, route_template, uri_tag


class RequestContextMiddleware:
    """Adds request_id context and access logs."""

    def __init__(self, app: Callable[..., Any]) -> None:
        self.app = app

    async def __call__(self, scope: dict[str, Any], receive: Callable[..., Any], send: Callable[..., Any]) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        request_id = str(uuid.uuid4())
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            path=scope.get("path"),
            method=scope.get("method"),
        )

        start = perf_counter()
        status_code: int = 500

        async def send_wrapper(message: dict[str, Any]) -> None:
            nonlocal status_code

            if message.get("type") == "http.response.start":
                status_code = int(message.get("status", 500))
                headers = MutableHeaders(scope=message)
                headers["X-Request-ID"] = request_id

            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            structlog.get_logger("access").info(
                "http_request",
                status_code=status_code,
                route=route_template(scope),
                elapsed_ms=round((perf_counter() - start) * 1000.0, 2),
            )
            structlog.contextvars.clear_contextvars()


class ServerRequestMetricsMiddleware:
    """Times every inbound exchange into the `http.server.requests` timer.

    The sample is taken in a single `finally` so successful responses, error
    responses, unhandled exceptions and the router's not-found fallback each
    record exactly once with the final status.
    """

    def __init__(
        self,
        app: Callable[..., Any],
        publisher: WebMetricsPublisher,
        excluded_paths: Iterable[str] = (),
    ) -> None:
        self.app = app
        self.publisher = publisher
        # Avoid self-observing the exposition endpoint.
        self._excluded_paths = frozenset(excluded_paths)

    async def __call__(self, scope: dict[str, Any], receive: Callable[..., Any], send: Callable[..., Any]) -> None:
        if scope.get("type") != "http" or scope.get("path") in self._excluded_paths:
            await self.app(scope, receive, send)
            return

        start = perf_counter()
        status_code: int | None = None
        error: BaseException | None = None

        async def send_wrapper(message: dict[str, Any]) -> None:
            nonlocal status_code

            if message.get("type") == "http.response.start":
                status_code = int(message.get("status", 500))
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        except BaseException as exc:
            error = exc
            raise
        finally:
            elapsed_s = perf_counter() - start
            # An exception escaping before the response started is rendered as a 500 further out.
            final_status = status_code if status_code is not None else 500
            self.publisher.publish(
                elapsed_s,
                {
                    "method": str(scope.get("method", "UNKNOWN")),
                    "uri": uri_tag(route_template(scope), final_status),
                    "host": host_tag(scope),
                    "status": str(final_status),
                    "exception": exception_tag(error),
                },
            )
