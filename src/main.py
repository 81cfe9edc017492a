"""sidequest - Campus peer-to-peer task marketplace."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from src.core.config import constants, settings
from src.core.db_client import close_connection, init_db
from src.core.logging import configure_logfire, instrument_fastapi
from src.interface.router import router as api_router


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan context manager."""
    # Startup
    configure_logfire()

    if settings.is_production:
        # Refuse to start without observability in production
        settings.require_credential("logfire_token", "Pydantic Logfire")

    await init_db()
    logger.info("Database initialized", extra={"db_path": settings.sqlite_db_path})
    yield
    # Shutdown
    await close_connection()


app = FastAPI(
    title="sidequest",
    description="Campus peer-to-peer task marketplace",
    version="0.1.0",
    lifespan=lifespan,
)

# Instrument FastAPI with Logfire
instrument_fastapi(app)

# Register routers
app.include_router(api_router)


@app.get("/health")
async def health_check() -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse(content={"status": "healthy"}, status_code=constants.HTTP_OK)
