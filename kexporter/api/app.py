"""FastAPI application factory for the metrics endpoint.

Routes:
    GET /metrics    -- Prometheus text exposition of the exporter's registry.
    GET /-/healthy  -- Liveness: always ``OK`` while the process serves HTTP.
    GET /-/ready    -- Readiness: ``OK`` once the event watcher is running.
"""

from __future__ import annotations

from collections.abc import Callable

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.responses import HTMLResponse, PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest

_log = structlog.get_logger(component="api.app")

_METRICS_PATH = "/metrics"

_LANDING_PAGE = """<html>
<head><title>kexporter</title></head>
<body>
<h1>kexporter</h1>
<p>Export Kubernetes Events to multiple destinations with routing and filtering</p>
<ul><li><a href="{path}">Metrics</a></li></ul>
</body>
</html>
"""


def create_app(
    registry: CollectorRegistry,
    ready: Callable[[], bool] | None = None,
) -> FastAPI:
    """Create the metrics/health FastAPI application.

    Args:
        registry: Prometheus registry holding the exporter's counters.
        ready:    Readiness callback; ``None`` means always ready.
    """
    from kexporter import __version__

    app = FastAPI(
        title="kexporter",
        summary="Kubernetes event exporter metrics",
        version=__version__,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    app.state.registry = registry
    app.state.ready = ready or (lambda: True)

    @app.get("/", response_class=HTMLResponse)
    async def landing() -> str:
        return _LANDING_PAGE.format(path=_METRICS_PATH)

    @app.get(_METRICS_PATH)
    async def metrics(request: Request) -> Response:
        body = generate_latest(request.app.state.registry)
        return Response(content=body, media_type=CONTENT_TYPE_LATEST)

    @app.get("/-/healthy", response_class=PlainTextResponse)
    async def healthy() -> str:
        return "OK"

    @app.get("/-/ready", response_class=PlainTextResponse)
    async def readiness(request: Request) -> PlainTextResponse:
        if request.app.state.ready():
            return PlainTextResponse("OK")
        _log.debug("readiness_not_ready")
        return PlainTextResponse("NOT READY", status_code=503)

    return app
