from __future__ import annotations

from typing import Any

from fastapi import FastAPI

from webmetrics.api.metrics import build_metrics_router
from webmetrics.config import Settings, get_settings
from webmetrics.observability.logging import configure_logging
from webmetrics.observability.middleware import RequestContextMiddleware, ServerRequestMetricsMiddleware
from webmetrics.observability.publisher import (
    METRIC_HTTP_CLIENT_REQUESTS,
    METRIC_HTTP_SERVER_REQUESTS,
    WebMetricsPublisher,
)
from webmetrics.observability.registry import MeterRegistry
from webmetrics.observability.transport import ClientRequestMetricsFilter


def create_app(settings: Settings | None = None, registry: MeterRegistry | None = None) -> FastAPI:
    """Compose the request pipeline, with or without the timing filters.

    Both timing filters are installed only when the global metrics switch and
    the web binder switch are both on.
    """

    settings = settings or get_settings()
    registry = registry or MeterRegistry()
    configure_logging(settings.log_level)

    app = FastAPI(title="Web Metrics", version="0.1.0")
    app.state.settings = settings
    app.state.meter_registry = registry
    app.state.client_metrics_filter = None

    if settings.web_metrics_active:
        app.add_middleware(
            ServerRequestMetricsMiddleware,
            publisher=WebMetricsPublisher(
                registry,
                METRIC_HTTP_SERVER_REQUESTS,
                percentiles=settings.web_server_percentiles,
                slos=settings.web_server_slos,
            ),
            excluded_paths=(settings.metrics_endpoint_path,),
        )
        app.state.client_metrics_filter = ClientRequestMetricsFilter(
            WebMetricsPublisher(
                registry,
                METRIC_HTTP_CLIENT_REQUESTS,
                percentiles=settings.web_client_percentiles,
                slos=settings.web_client_slos,
            )
        )
    # Added last so it is outermost and its request_id covers the timing filter.
    app.add_middleware(RequestContextMiddleware)

    app.include_router(build_metrics_router(settings.metrics_endpoint_path))

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    return app


def find_filter(app: FastAPI, filter_type: type) -> Any | None:
    """Return the installed instance/middleware entry of `filter_type`, or None."""

    client_filter = getattr(app.state, "client_metrics_filter", None)
    if isinstance(client_filter, filter_type):
        return client_filter
    for middleware in app.user_middleware:
        if middleware.cls is filter_type:
            return middleware
    return None
