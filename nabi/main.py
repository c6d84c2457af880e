"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from nabi.api.webhook import router as webhook_router
from nabi.config import get_settings
from nabi.database import engine
from nabi.errors import DatastoreError

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    # Startup: refuse to serve without a reachable database
    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        raise DatastoreError(f"Database connectivity check failed: {e}") from e

    logger.info(
        "Nabi started (environment=%s, router=%s, whatsapp configured=%s)",
        settings.environment,
        settings.router_mode,
        bool(settings.whatsapp_token and settings.phone_number_id),
    )

    yield

    # Shutdown
    await engine.dispose()


app = FastAPI(
    title="Nabi",
    description="WhatsApp bot for song, image and video generation",
    version="0.1.0",
    lifespan=lifespan,
    debug=settings.debug,
)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler."""
    logger.error(f"Unhandled error on {request.url.path}: {exc}")
    if settings.debug:
        return JSONResponse(
            status_code=500,
            content={"detail": str(exc), "type": type(exc).__name__},
        )
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


app.include_router(webhook_router, tags=["webhook"])


@app.get("/", response_class=PlainTextResponse)
async def liveness() -> str:
    """Liveness check."""
    return "Nabi Bot is Alive! 🧞‍♂️"
