"""Probe endpoints: liveness, readiness and the last report per cycle."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from .models import CycleKind, HealthStatus, ServiceStatus

if TYPE_CHECKING:
    from .service import MailService

# A failed cycle never makes the process unhealthy; the next trigger retries it.
_ALIVE = frozenset({ServiceStatus.STARTING, ServiceStatus.RUNNING})


def snapshot(service: MailService) -> HealthStatus:
    return HealthStatus(
        service_name=service.config.name,
        status=service.status,
        uptime_seconds=time.monotonic() - service.start_time,
        cycles={kind.value: report for kind, report in service.last_reports.items()},
    )


def create_health_app(service: MailService) -> FastAPI:
    """FastAPI app serving ``/health``, ``/ready`` and ``/cycles/{kind}``."""
    app = FastAPI(title=f"{service.config.name} probes", docs_url=None, redoc_url=None)

    @app.get("/health")
    async def health() -> JSONResponse:
        body = snapshot(service).model_dump(mode="json")
        return JSONResponse(body, status_code=200 if service.status in _ALIVE else 503)

    @app.get("/ready")
    async def ready() -> JSONResponse:
        accepting = service.status is ServiceStatus.RUNNING
        return JSONResponse(
            {"ready": accepting, "status": service.status.value},
            status_code=200 if accepting else 503,
        )

    @app.get("/cycles/{kind}")
    async def last_cycle(kind: CycleKind) -> JSONResponse:
        report = service.last_reports.get(kind)
        if report is None:
            return JSONResponse({"detail": f"no {kind.value} cycle has run yet"}, status_code=404)
        return JSONResponse(report.model_dump(mode="json"))

    return app
