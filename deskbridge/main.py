"""Main FastAPI application"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from deskbridge.api import audit, correlations, webhook
from deskbridge.config import settings
from deskbridge.models.base import SessionLocal, init_db
from deskbridge.scheduler import scheduler
from deskbridge.security import SharedKeyMiddleware
from deskbridge.services.bridge import build_runtime

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    # Startup
    logger.info("Starting Zendesk/ClickUp bridge")
    init_db()
    runtime = build_runtime(settings, SessionLocal)
    app.state.runtime = runtime
    scheduler.start(stores=[runtime.cache, runtime.durable])
    yield
    # Shutdown
    logger.info("Stopping Zendesk/ClickUp bridge")
    scheduler.stop()


app = FastAPI(
    title="Zendesk ClickUp Bridge",
    description="Keep Zendesk tickets and ClickUp tasks in sync",
    version="1.0.0",
    lifespan=lifespan,
)

# Optional shared-key auth (recommended whenever the webhook is publicly reachable)
if settings.shared_key:
    app.add_middleware(
        SharedKeyMiddleware,
        key=settings.shared_key,
        allow_paths={"/health"},
        allow_get_paths={"/webhook"},
    )

# Include API routers
app.include_router(webhook.router)
app.include_router(correlations.router)
app.include_router(audit.router)


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "service": "Zendesk ClickUp Bridge"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "deskbridge.main:app",
        host=settings.host,
        port=settings.port,
        reload=False,
        log_level=settings.log_level.lower(),
    )
