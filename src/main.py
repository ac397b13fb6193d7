import asyncio
from contextlib import asynccontextmanager, suppress

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.api.core.exceptions.base import register_exception_handlers
from src.api.core.middleware.logging import logging_middleware
from src.api.core.middleware.security import (
    SecurityHeadersMiddleware,
    PayloadSizeMiddleware,
)
from src.api.router import api_router
from src.database.connection import AsyncSessionLocal
from src.modules.settlement.reconciler import run_forever
from src.redis.client import close_redis_pool
from src.utils.settings.app import AppSettings
from src.utils.settings.provider import ProviderSettings
from src.utils.settings.settlement import SettlementSettings
from src.utils.logger import setup_logging


is_production = AppSettings().ENVIRONMENT.upper() == "PROD"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup

    logger = setup_logging(is_production)
    logger.info("Starting WedAI API...")
    AppSettings().validate_prod()

    # Add session factory to app state
    app.state.session_factory = AsyncSessionLocal
    logger.info("Database session factory added to app state")

    reconciler_task = None
    settlement_settings = SettlementSettings()
    settlement_settings.validate_grace(ProviderSettings().PROVIDER_TIMEOUT_SECONDS)
    if settlement_settings.RECONCILER_ENABLED:
        reconciler_task = asyncio.create_task(
            run_forever(app.state.session_factory, settlement_settings)
        )

    yield

    # Shutdown
    logger.info("Shutting down WedAI API...")
    if reconciler_task is not None:
        reconciler_task.cancel()
        with suppress(asyncio.CancelledError):
            await reconciler_task
    await close_redis_pool()


# Create app with production settings
app = FastAPI(
    title="WedAI API",
    description="Quota-enforced credit consumption for AI portrait generation",
    version=AppSettings().API_VERSION,
    lifespan=lifespan,
    # Security: Disable docs in production
    docs_url=None if is_production else "/docs",
    redoc_url=None if is_production else "/redoc",
    openapi_url=None if is_production else "/openapi.json",
)

# Register global exception handlers
register_exception_handlers(app)


# Configure CORS middleware with explicit settings
app_settings = AppSettings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=app_settings.CORS_ORIGINS,
    allow_origin_regex=r"https://.*\.vercel\.app",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["*"],
)

app.add_middleware(SecurityHeadersMiddleware, is_production=is_production)
app.add_middleware(PayloadSizeMiddleware, max_request_size=app_settings.MAX_REQUEST_SIZE)
app.middleware("http")(logging_middleware)

app.include_router(api_router)


def run_dev_server():
    """Run development server with auto-reload."""
    uvicorn.run(
        "src.main:app", host="0.0.0.0", port=8010, reload=True, access_log=False
    )


def run_prod_server():
    """Run production server."""
    uvicorn.run(
        "src.main:app", host="0.0.0.0", port=8010, reload=False, access_log=False
    )
