from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from techhub.api.router import api_router
from techhub.config import get_settings
from techhub.core.errors import register_exception_handlers
from techhub.core.logging import setup_logging
from techhub.core.scheduler import (
    start_delivery_workers,
    start_scheduler,
    stop_delivery_workers,
    stop_scheduler,
)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    # Startup
    setup_logging()
    await start_scheduler()
    start_delivery_workers()
    yield
    # Shutdown
    await stop_delivery_workers()
    await stop_scheduler()


app = FastAPI(
    title="TechHub",
    description="Newsletter publishing and delivery API",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/api/docs" if settings.debug else None,
    redoc_url="/api/redoc" if settings.debug else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.base_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

app.include_router(api_router)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint for load balancers."""
    return {"status": "healthy"}
