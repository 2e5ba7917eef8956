from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST

from webmetrics.observability.registry import MeterRegistry


def build_metrics_router(path: str) -> APIRouter:
    router = APIRouter(tags=["metrics"])

    @router.get(path, include_in_schema=False)
    async def metrics(request: Request) -> Response:
        settings = request.app.state.settings
        if not settings.enable_metrics_endpoint:
            raise HTTPException(status_code=404, detail="Not found")
        registry: MeterRegistry = request.app.state.meter_registry
        return Response(content=registry.generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return router
