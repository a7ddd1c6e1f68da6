"""
Health check and status endpoints
"""
from fastapi import APIRouter, Request
from datetime import datetime
from bizos.config import get_settings
from bizos import __version__

settings = get_settings()

router = APIRouter()


@router.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "version": __version__
    }


@router.get("/status")
async def get_status(request: Request):
    """Get system status"""
    from bizos.scheduler import get_scheduled_jobs

    return {
        "app_name": settings.app_name,
        "version": __version__,
        "environment": settings.environment,
        "connectors": request.app.state.job_runner.registry.supported(),
        "scheduled_jobs": get_scheduled_jobs(),
        "realtime_connections": request.app.state.realtime.count(),
        "timestamp": datetime.utcnow().isoformat()
    }
