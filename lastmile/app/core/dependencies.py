"""
Service dependencies for FastAPI.

Wires the store, cache and image store for one request and builds the
dispatch services on top of them. Tests override get_db, get_redis and
get_image_store.
"""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from lastmile.app.core.redis_client import get_redis
from lastmile.app.db.session import get_db
from lastmile.app.services.assignment import AssignmentCoordinator
from lastmile.app.services.cache import ProjectionCache
from lastmile.app.services.image_store import HttpImageStore, ImageStore
from lastmile.app.services.projections import ProjectionBuilder
from lastmile.app.services.rider_locations import RiderLocationService, location_cache
from lastmile.app.services.status_transition import StatusTransitionEngine
from lastmile.app.services.store import SqlStore, session_store


async def get_store(db: AsyncSession = Depends(get_db)) -> SqlStore:
    return SqlStore(db)


async def get_projection_cache(redis=Depends(get_redis)) -> ProjectionCache:
    return ProjectionCache(redis)


async def get_image_store() -> ImageStore:
    return HttpImageStore()


async def get_projections(
    store: SqlStore = Depends(get_store),
    cache: ProjectionCache = Depends(get_projection_cache),
) -> ProjectionBuilder:
    return ProjectionBuilder(store, cache)


async def get_assignment_coordinator(
    store: SqlStore = Depends(get_store),
    projections: ProjectionBuilder = Depends(get_projections),
) -> AssignmentCoordinator:
    return AssignmentCoordinator(store, on_change=projections.invalidate)


async def get_transition_engine(
    store: SqlStore = Depends(get_store),
    image_store: ImageStore = Depends(get_image_store),
    projections: ProjectionBuilder = Depends(get_projections),
) -> StatusTransitionEngine:
    return StatusTransitionEngine(
        store,
        image_store=image_store,
        on_change=projections.invalidate,
        late_store=session_store,
    )


async def get_location_service(
    store: SqlStore = Depends(get_store),
    redis=Depends(get_redis),
) -> RiderLocationService:
    return RiderLocationService(store, location_cache(redis))
