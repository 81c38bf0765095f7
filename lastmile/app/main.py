"""
FastAPI Application Entry Point.

This is the main application file for the Last-Mile Dispatch Backend.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import Depends, FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from lastmile.app.core.config import settings
from lastmile.app.api.v1.router import router as api_v1_router
from lastmile.app.core.dependencies import get_store
from lastmile.app.core.observability import ObservabilityMiddleware, configure_logging
from lastmile.app.core.redis_client import get_redis, ping_redis
from lastmile.app.db.session import engine, Base
from lastmile.app.core.exceptions import (
    AppException,
    StoreUnavailableError,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)
from lastmile.app.services.status_transition import drain_background
from lastmile.app.services.store import SqlStore

# Import models to ensure they are registered with Base
from lastmile.app.models.user import User, UserAddress
from lastmile.app.models.rider import Rider
from lastmile.app.models.rider_location import RiderLocation
from lastmile.app.models.parcel import Parcel
from lastmile.app.models.delivery import Delivery


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.
    
    Configures logging and creates database tables on startup; on
    shutdown waits for proof photos still being uploaded.
    """
    configure_logging()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await drain_background()


app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Parcel dispatch: rider claims and delivery status sync",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check(
    store: SqlStore = Depends(get_store),
    redis=Depends(get_redis),
):
    """
    Health check endpoint.
    
    Probes the store with the short health timeout. Redis being down
    only degrades caching and is reported, not failed.
    """
    body = {
        "app_name": settings.app_name,
        "version": settings.api_version,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "cache": "connected" if await ping_redis(redis) else "unavailable",
    }
    try:
        await store.ping()
    except StoreUnavailableError as e:
        body.update(status="unhealthy", database="disconnected", error=e.message)
        return JSONResponse(status_code=503, content=body)
    
    body.update(status="healthy", database="connected")
    return body


app.include_router(api_v1_router, prefix=f"/{settings.api_version}")


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": "Last-Mile Dispatch Backend is running",
        "docs": "/docs",
        "health": "/health",
    }
