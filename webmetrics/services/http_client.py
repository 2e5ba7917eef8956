from __future__ import annotations

from string import Formatter
from typing import Any, Mapping
from urllib.parse import quote

import httpx
from fastapi import FastAPI

from webmetrics.config import Settings, get_settings
from webmetrics.observability.transport import URI_TEMPLATE_EXTENSION, ClientRequestMetricsFilter


def create_http_client(
    source: FastAPI | ClientRequestMetricsFilter | None,
    base_url: str,
    transport: httpx.AsyncBaseTransport | None = None,
    settings: Settings | None = None,
) -> httpx.AsyncClient:
    """Build an AsyncClient whose transport is timed when the client filter is installed.

    `source` is either the composed app (its client filter is looked up on
    `app.state`) or a filter instance; None yields a plain client.
    """

    settings = settings or get_settings()
    metrics_filter = source
    if isinstance(source, FastAPI):
        metrics_filter = getattr(source.state, "client_metrics_filter", None)

    limits = httpx.Limits(
        max_connections=settings.http_client_max_connections,
        max_keepalive_connections=settings.http_client_max_keepalive,
    )
    if transport is None:
        transport = httpx.AsyncHTTPTransport(limits=limits)
    if isinstance(metrics_filter, ClientRequestMetricsFilter):
        transport = metrics_filter.wrap(transport)

    return httpx.AsyncClient(
        base_url=base_url,
        transport=transport,
        timeout=settings.http_client_timeout_s,
        limits=limits,
    )


def expand_template(template: str, path_params: Mapping[str, Any]) -> str:
    names = {field for _, field, _, _ in Formatter().parse(template) if field}
    missing = names - set(path_params)
    if missing:
        raise ValueError(f"Missing path parameters for {template!r}: {sorted(missing)}")
    return template.format_map({name: quote(str(path_params[name]), safe="") for name in names})


class TemplatedClient:
    """Issues requests against route templates so client timers are tagged by template."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self.client = client

    async def request(
        self,
        method: str,
        template: str,
        path_params: Mapping[str, Any] | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        url = expand_template(template, path_params or {})
        extensions = dict(kwargs.pop("extensions", None) or {})
        extensions[URI_TEMPLATE_EXTENSION] = template
        return await self.client.request(method, url, extensions=extensions, **kwargs)

    async def get(self, template: str, **path_params: Any) -> httpx.Response:
        return await self.request("GET", template, path_params=path_params)

    async def aclose(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> "TemplatedClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()
