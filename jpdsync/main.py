"""Main FastAPI application"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from jpdsync import __version__
from jpdsync.api import sync
from jpdsync.config import settings
from jpdsync.scheduler import scheduler
from jpdsync.security import WebhookSecretMiddleware

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
    logger.info("Starting JPD <-> GitLab Sync Service")
    scheduler.start()
    yield
    # Shutdown
    logger.info("Stopping JPD <-> GitLab Sync Service")
    scheduler.stop()


app = FastAPI(
    title="JPD GitLab Sync Service",
    description="Keep Jira Product Discovery issues and GitLab issues in sync",
    version=__version__,
    lifespan=lifespan,
)

# Webhook senders must present the shared secret when one is configured
if settings.webhook_secret:
    app.add_middleware(WebhookSecretMiddleware, secret=settings.webhook_secret)

app.include_router(sync.router)
app.include_router(sync.webhook_router)


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "service": "JPD GitLab Sync", "dry_run": settings.dry_run}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "jpdsync.main:app",
        host=settings.host,
        port=settings.port,
        reload=False,
        log_level=settings.log_level.lower(),
    )
