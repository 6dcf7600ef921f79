"""Main FastAPI application"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from reconciler.api import assignee_mappings, sync
from reconciler.config import settings
from reconciler.models.base import configure_database
from reconciler.scheduler import scheduler

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
    logger.info("Starting issue reconciler")
    configure_database(settings.database_url)
    scheduler.start()
    yield
    # Shutdown
    logger.info("Stopping issue reconciler")
    scheduler.stop()


app = FastAPI(
    title="Issue Reconciler",
    description="Keep issues consistent between a source and a target tracker",
    version="1.0.0",
    lifespan=lifespan,
)

# Include API routers
app.include_router(assignee_mappings.router)
app.include_router(sync.router)


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "service": "Issue Reconciler"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "reconciler.main:app",
        host=settings.host,
        port=settings.port,
        reload=False,
        log_level=settings.log_level.lower(),
    )
