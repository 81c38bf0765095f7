"""
Rider live location tracking.

Each rider has at most one location row, overwritten on every report.
Reads are cached briefly in their own cache namespace so a stream of
GPS reports never flushes the parcel and job projections.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.exc import IntegrityError

from lastmile.app.core.config import settings
from lastmile.app.core.exceptions import NotFoundError
from lastmile.app.models.rider import Rider
from lastmile.app.models.rider_location import RiderLocation
from lastmile.app.schemas.rider_location import LocationRider, LocationUpdate, RiderLocationView
from lastmile.app.services.cache import ProjectionCache
from lastmile.app.services.store import SqlStore

logger = logging.getLogger("lastmile.locations")


def location_cache(redis) -> ProjectionCache:
    return ProjectionCache(
        redis,
        ttl_seconds=settings.location_cache_ttl_seconds,
        prefix=settings.location_cache_prefix,
    )


class RiderLocationService:
    
    def __init__(self, store: SqlStore, cache: Optional[ProjectionCache] = None):
        self.store = store
        self.cache = cache
    
    async def _require_rider(self, rider_id: int) -> Rider:
        rider = await self.store.first(Rider, Rider.rider_id == rider_id)
        if rider is None:
            raise NotFoundError("Rider", rider_id)
        return rider
    
    async def update(self, rider_id: int, data: LocationUpdate) -> Dict[str, Any]:
        """Record the rider's latest position, replacing the previous one."""
        rider = await self._require_rider(rider_id)
        values = {**data.model_dump(), "updated_at": datetime.now(timezone.utc)}
        
        affected = await self.store.conditional_update(
            RiderLocation, values, RiderLocation.rider_id == rider_id
        )
        if affected == 0:
            try:
                await self.store.insert(RiderLocation(rider_id=rider_id, **values))
            except IntegrityError:
                # first report raced another first report; the row exists now
                await self.store.session.rollback()
                await self.store.conditional_update(RiderLocation, values, RiderLocation.rider_id == rider_id)
        
        if self.cache is not None:
            await self.cache.invalidate_all()
        
        location = await self.store.first(RiderLocation, RiderLocation.rider_id == rider_id)
        logger.debug("Rider %s at %.5f,%.5f", rider_id, location.latitude, location.longitude)
        return self._view(location, {rider_id: rider})
    
    async def get(self, rider_id: int) -> Optional[Dict[str, Any]]:
        """Last known position of one rider, None if never reported."""
        await self._require_rider(rider_id)
        
        async def build():
            location = await self.store.first(RiderLocation, RiderLocation.rider_id == rider_id)
            if location is None:
                return None
            return self._view(location, await self._riders([rider_id]))
        
        return await self._cached(f"rider:{rider_id}", build)
    
    async def all(self) -> List[Dict[str, Any]]:
        """Every rider's position for the map, freshest first."""
        
        async def build():
            return await self._views()
        
        return await self._cached("all", build)
    
    async def multiple(self, rider_ids: Iterable[int]) -> List[Dict[str, Any]]:
        """Positions of the given riders, freshest first; unknown ids are skipped."""
        ids = sorted(set(rider_ids))
        if not ids:
            return []
        return await self._views(RiderLocation.rider_id.in_(ids))
    
    async def _views(self, *criteria) -> List[Dict[str, Any]]:
        locations = await self.store.get(
            RiderLocation,
            *criteria,
            order_by=(RiderLocation.updated_at.desc(), RiderLocation.rider_id.asc()),
        )
        riders = await self._riders([loc.rider_id for loc in locations])
        return [self._view(loc, riders) for loc in locations]
    
    async def _riders(self, rider_ids: List[int]) -> Dict[int, Rider]:
        if not rider_ids:
            return {}
        return {r.rider_id: r for r in await self.store.get(Rider, Rider.rider_id.in_(rider_ids))}
    
    @staticmethod
    def _view(location: RiderLocation, riders: Dict[int, Rider]) -> Dict[str, Any]:
        rider = riders.get(location.rider_id)
        return RiderLocationView(
            rider_id=location.rider_id,
            latitude=location.latitude,
            longitude=location.longitude,
            accuracy=location.accuracy,
            heading=location.heading,
            speed=location.speed,
            updated_at=location.updated_at,
            rider=LocationRider.model_validate(rider) if rider is not None else None,
        ).model_dump(mode="json")
    
    async def _cached(self, key: str, build) -> Any:
        if self.cache is None:
            return await build()
        generation = await self.cache.generation()
        if generation is None:
            return await build()
        hit = await self.cache.get(key, generation=generation)
        if hit is not None:
            return hit
        value = await build()
        if value is not None:
            await self.cache.set(key, value, generation=generation)
        return value
