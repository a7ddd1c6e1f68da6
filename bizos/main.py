"""
AI Business OS
Main FastAPI application
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from bizos.config import get_settings
from bizos.utils.logger import log
from bizos import __version__

# Import routers
from bizos.api import health, realtime, sync, webhooks
from bizos.realtime.registry import ConnectionRegistry
from bizos.services.sync_job_runner import SyncJobRunner
from bizos.webhooks.gateway import WebhookGateway

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    # Startup
    log.info(f"Starting {settings.app_name} v{__version__}")
    log.info(f"Environment: {settings.environment}")

    # Initialize database
    try:
        from bizos.models.base import init_db
        init_db()
        log.info("Database initialized")
    except Exception as e:
        log.error(f"Database initialization error: {str(e)}")

    # Start the scheduler for recurring syncs
    if settings.scheduler_enabled:
        try:
            from bizos.scheduler import start_scheduler
            start_scheduler(app.state.job_runner)
        except Exception as e:
            log.error(f"Scheduler startup error: {str(e)}")

    yield

    # Shutdown
    if settings.scheduler_enabled:
        from bizos.scheduler import stop_scheduler
        stop_scheduler()
    log.info("Shutting down application")


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    version=__version__,
    description="""
    Connector sync and normalization core

    Pulls data from Shopify, Stripe, Meta Ads, GA4 and Tiendanube into a
    shared multi-tenant schema, via scheduled polling and inbound webhooks.
    """,
    lifespan=lifespan
)

# Shared services; one instance of each per process
app.state.realtime = ConnectionRegistry()
app.state.job_runner = SyncJobRunner(realtime=app.state.realtime)
app.state.webhook_gateway = WebhookGateway(registry=app.state.job_runner.registry, realtime=app.state.realtime)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router, tags=["health"])
app.include_router(webhooks.router)
app.include_router(sync.router)
app.include_router(realtime.router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "bizos.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug
    )
