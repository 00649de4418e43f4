"""Main FastAPI application."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from keypool import __version__
from keypool.core.config import settings
from keypool.core.keys import build_key_service
from keypool.core.logging import setup_logging
from keypool.core.storage.database import init_db, close_db, get_session_factory
from keypool.api.routes import keys, settings as settings_routes

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    setup_logging(settings.log_level)
    logger.info("Initializing database...")
    await init_db()
    logger.info("Database initialized successfully")

    app.state.key_service = build_key_service(get_session_factory(), settings)

    if settings.run_migration_on_startup:
        report = await app.state.key_service.migrate()
        if report.failed:
            logger.warning(
                "Legacy key migration failed for some providers",
                extra={"failed": report.failed},
            )
        else:
            logger.info(
                "Legacy key migration complete",
                extra={"migrated": report.migrated, "skipped": len(report.skipped)},
            )

    yield

    # Shutdown
    logger.info("Closing database connections...")
    await close_db()
    logger.info("Application shutdown complete")


# Create FastAPI app
app = FastAPI(
    title="Provider Key Pool",
    description="Multi-key credential pool and load balancing for AI providers",
    version=__version__,
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(settings_routes.router, prefix="/api/v1")
app.include_router(keys.router, prefix="/api/v1")


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Provider Key Pool",
        "version": __version__,
        "status": "running",
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "keypool.main:app",
        host=settings.host,
        port=settings.port,
        reload=True,
    )
