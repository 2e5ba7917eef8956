from __future__ import annotations

from collections.abc import AsyncIterator, Callable

import pytest
from fastapi import APIRouter, FastAPI, Request, Response
from fastapi.responses import JSONResponse, PlainTextResponse
from httpx import ASGITransport

from webmetrics.config import Settings, get_settings
from webmetrics.main import create_app
from webmetrics.services.http_client import TemplatedClient, create_http_client


_ENV_KEYS = (
    "METRICS_ENABLED",
    "METRICS_BINDERS_WEB_ENABLED",
    "METRICS_BINDERS_WEB_SERVER_PERCENTILES",
    "METRICS_BINDERS_WEB_CLIENT_PERCENTILES",
    "METRICS_BINDERS_WEB_SERVER_SLOS",
    "METRICS_BINDERS_WEB_CLIENT_SLOS",
    "ENABLE_METRICS_ENDPOINT",
    "METRICS_ENDPOINT_PATH",
)


class HandledError(RuntimeError):
    pass


stimulus_router = APIRouter(default_response_class=PlainTextResponse)


@stimulus_router.get("/")
async def root() -> str:
    return "root"


@stimulus_router.get("/test-http-metrics")
async def index() -> str:
    return "ok"


@stimulus_router.get("/test-http-metrics/error")
async def error() -> Response:
    return Response(status_code=409)


@stimulus_router.get("/test-http-metrics/throwable")
async def throwable() -> Response:
    raise RuntimeError("error")


@stimulus_router.get("/test-http-metrics/exception-handling")
async def exception_handling() -> Response:
    raise HandledError("my custom exception")


@stimulus_router.get("/test-http-metrics/{id}")
async def template(id: str) -> str:
    return f"ok {id}"


async def _handled_error(request: Request, exc: HandledError) -> JSONResponse:
    _ = request, exc
    return JSONResponse(status_code=400, content={"detail": "bad request"})


@pytest.fixture(autouse=True)
def test_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


AppFactory = Callable[..., tuple[FastAPI, TemplatedClient]]


@pytest.fixture
async def metrics_app() -> AsyncIterator[AppFactory]:
    """Build the composed app with the stimulus routes plus a templated client bound to it."""

    clients: list[TemplatedClient] = []

    def _build(settings: Settings | None = None) -> tuple[FastAPI, TemplatedClient]:
        settings = settings or get_settings()
        app = create_app(settings)
        app.include_router(stimulus_router)
        app.add_exception_handler(HandledError, _handled_error)

        # Unhandled faults must come back as 500 responses rather than raise in the test.
        transport = ASGITransport(app=app, raise_app_exceptions=False)
        client = TemplatedClient(
            create_http_client(app, base_url="http://localhost", transport=transport, settings=settings)
        )
        clients.append(client)
        return app, client

    yield _build

    for client in clients:
        await client.aclose()
