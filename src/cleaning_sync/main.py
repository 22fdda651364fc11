"""Main application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from cleaning_sync.api.routes import router as api_router, set_orchestrator
from cleaning_sync.config import settings
from cleaning_sync.core.orchestrator import SyncOrchestrator
from cleaning_sync.db.database import init_db
from cleaning_sync.scheduler.scheduler import SyncScheduler

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Starting cleaning sync service...")

    await init_db()

    orchestrator = SyncOrchestrator(settings)
    set_orchestrator(orchestrator)

    scheduler = SyncScheduler(
        on_sync=orchestrator.sync_all_feeds,
        interval_hours=settings.sync_interval_hours,
    )
    scheduler.start()

    logger.info("Application started successfully")

    yield

    logger.info("Shutting down cleaning sync service...")
    scheduler.stop()
    await orchestrator.close()
    set_orchestrator(None)
    logger.info("Application shutdown complete")


app = FastAPI(
    title="Cleaning Sync",
    description="Calendar feed sync for checkout cleaning jobs",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix="/api")


def main():
    """Run the application."""
    import uvicorn

    uvicorn.run(
        "cleaning_sync.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    main()
