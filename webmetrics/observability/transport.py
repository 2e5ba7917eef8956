from __future__ import annotations

from time import perf_counter
from typing import Final

import httpx
import structlog

from webmetrics.observability.publisher import WebMetricsPublisher
from webmetrics.observability.tags import STATUS_CLIENT_ERROR, exception_tag, uri_tag

URI_TEMPLATE_EXTENSION: Final = "uri_template"


class ClientRequestMetricsFilter:
    """Client-side half of the web binder: wraps httpx transports with timing."""

    def __init__(self, publisher: WebMetricsPublisher) -> None:
        self.publisher = publisher

    def wrap(self, transport: httpx.AsyncBaseTransport) -> "ClientRequestMetricsTransport":
        return ClientRequestMetricsTransport(transport, self.publisher)


class ClientRequestMetricsTransport(httpx.AsyncBaseTransport):
    """Times outbound requests into the `http.client.requests` timer."""

    def __init__(self, transport: httpx.AsyncBaseTransport, publisher: WebMetricsPublisher) -> None:
        self._transport = transport
        self.publisher = publisher

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        start = perf_counter()
        status: int | None = None
        error: BaseException | None = None
        try:
            response = await self._transport.handle_async_request(request)
            status = response.status_code
            return response
        except Exception as exc:
            error = exc
            structlog.get_logger("http_client").warning(
                "http_client_request_failed",
                method=request.method,
                host=request.url.host,
                error=repr(exc),
            )
            raise
        finally:
            template = request.extensions.get(URI_TEMPLATE_EXTENSION)
            self.publisher.publish(
                perf_counter() - start,
                {
                    "method": request.method,
                    "uri": uri_tag(template if isinstance(template, str) else None, status),
                    "host": request.url.host or "unknown",
                    "status": str(status) if status is not None else STATUS_CLIENT_ERROR,
                    "exception": exception_tag(error),
                },
            )

    async def aclose(self) -> None:
        await self._transport.aclose()
