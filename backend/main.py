"""
FastAPI application entry point for Heirloom.

Exposes the scheduler trigger, owner check-in, beneficiary decryption
access and the administrator compensation routes.
"""

import os
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from heirloom.api.routes import health
from heirloom.api.routes import lifecycle
from heirloom.api.routes import heartbeat
from heirloom.api.routes import beneficiaries
from heirloom.api.routes import admin_compensation
from heirloom.api.routes import admin_vaults
from heirloom.config.settings import get_settings

# Configure structured logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info("Starting Heirloom API")

    for var in ("DATABASE_URL", "CRON_SECRET", "ADMIN_API_TOKEN"):
        if not os.getenv(var):
            logger.warning("Environment variable not set", extra={"variable": var})

    logger.info("Lifecycle settings loaded", extra=get_settings().to_dict())
    yield
    logger.info("Shutting down Heirloom API")


def create_app() -> FastAPI:
    app = FastAPI(
        title="Heirloom API",
        description="Dead man's switch for digital-asset inheritance",
        version="1.0.0",
        lifespan=lifespan
    )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.error(
            "Unhandled error",
            extra={"path": request.url.path, "error": str(exc)},
            exc_info=True,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "internal_error", "message": "Internal server error"},
        )

    app.include_router(health.router)
    app.include_router(lifecycle.router)
    app.include_router(heartbeat.router)
    app.include_router(beneficiaries.router)
    app.include_router(admin_compensation.router)
    app.include_router(admin_vaults.router)

    return app


app = create_app()
