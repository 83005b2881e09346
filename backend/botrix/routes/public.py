# /botrix/routes/public.py

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from botrix.config.settings import settings
from botrix.services.db_service import db_service
from botrix.utils.dependencies import verify_api_key

# Public service endpoints: root, health probes and the Prometheus scrape
# endpoint (protected by the API key when one is configured).

router = APIRouter()


@router.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": "Botrix Flow Service",
        "version": "1.0.0",
        "status": "operational",
        "environment": settings.environment
    }


@router.get("/health", summary="Basic Health Check")
async def health_check():
    """Basic health check for load balancers."""
    return {"status": "healthy", "timestamp": datetime.utcnow()}


@router.get("/health/ready", summary="Readiness Probe")
async def readiness_check():
    """Readiness probe: the database must answer a ping."""
    try:
        if not await db_service.ping():
            raise HTTPException(status_code=503, detail="Service not ready: database not connected")
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=503, detail=f"Service not ready: {e}")
    return {"status": "ready"}


@router.get("/metrics", dependencies=[Depends(verify_api_key)])
async def metrics():
    """Prometheus metrics."""
    return PlainTextResponse(generate_latest(), media_type=CONTENT_TYPE_LATEST)
