"""Endpoints de health, readiness y métricas."""

from fastapi import APIRouter, Depends, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from ..pipeline import TelemetryPipeline
from .deps import get_pipeline

router = APIRouter(tags=["health"])


@router.get("/health")
def health():
    """Liveness: ok mientras el proceso esté vivo."""
    return {"status": "ok"}


@router.get("/ready")
def ready(pipeline: TelemetryPipeline = Depends(get_pipeline)):
    """Readiness: base de datos accesible y broker conectado."""
    result = pipeline.readiness()
    if not result["ready"]:
        return JSONResponse(status_code=503, content={"status": "not ready", **result})
    return {"status": "ready", **result}


@router.get("/metrics")
def metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@router.get("/stats")
def stats(pipeline: TelemetryPipeline = Depends(get_pipeline)):
    """Contadores de buffers, flushers, MQTT y feed en vivo."""
    return pipeline.stats()
