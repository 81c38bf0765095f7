"""
Rider API Endpoints.

Rider profile, job lists and live location.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Path

from lastmile.app.core.dependencies import get_location_service, get_projections, get_store
from lastmile.app.core.exceptions import NotFoundError
from lastmile.app.models.rider import Rider
from lastmile.app.schemas.delivery import CurrentJobResponse, RiderJobView
from lastmile.app.schemas.rider_location import (
    LocationUpdate,
    LocationUpdateResponse,
    RiderIdsRequest,
    RiderLocationView,
)
from lastmile.app.schemas.user import RiderResponse
from lastmile.app.services.projections import ProjectionBuilder
from lastmile.app.services.rider_locations import RiderLocationService
from lastmile.app.services.store import SqlStore

router = APIRouter(prefix="/riders", tags=["Riders"])


async def _require_rider(store: SqlStore, rider_id: int) -> Rider:
    rider = await store.first(Rider, Rider.rider_id == rider_id)
    if rider is None:
        raise NotFoundError("Rider", rider_id)
    return rider


# Fleet map; registered before the /{rider_id} routes

@router.get("/locations/all", response_model=List[RiderLocationView])
async def list_rider_locations(
    locations: RiderLocationService = Depends(get_location_service),
):
    """Last known position of every rider, freshest first."""
    return await locations.all()


@router.post("/locations/multiple", response_model=List[RiderLocationView])
async def list_selected_rider_locations(
    request: RiderIdsRequest = ...,
    locations: RiderLocationService = Depends(get_location_service),
):
    """Positions of the given riders; riders without a report are left out."""
    return await locations.multiple(request.rider_ids)


@router.post("/{rider_id}/location", response_model=LocationUpdateResponse)
async def update_rider_location(
    rider_id: int = Path(..., description="Rider ID"),
    fix: LocationUpdate = ...,
    locations: RiderLocationService = Depends(get_location_service),
):
    location = await locations.update(rider_id, fix)
    return LocationUpdateResponse(message="Location updated successfully", location=location)


@router.get("/{rider_id}/location", response_model=Optional[RiderLocationView])
async def get_rider_location(
    rider_id: int = Path(..., description="Rider ID"),
    locations: RiderLocationService = Depends(get_location_service),
):
    """Last known position, or null if the rider never reported one."""
    return await locations.get(rider_id)


@router.get("/{rider_id}", response_model=RiderResponse)
async def get_rider(
    rider_id: int = Path(..., description="Rider ID"),
    store: SqlStore = Depends(get_store),
):
    return RiderResponse.model_validate(await _require_rider(store, rider_id))


@router.get("/{rider_id}/deliveries", response_model=List[RiderJobView])
async def list_rider_active_jobs(
    rider_id: int = Path(..., description="Rider ID"),
    store: SqlStore = Depends(get_store),
    projections: ProjectionBuilder = Depends(get_projections),
):
    """Pending and in-transit deliveries with captured coordinates."""
    await _require_rider(store, rider_id)
    return await projections.rider_jobs(rider_id, "active")


@router.get("/{rider_id}/history", response_model=List[RiderJobView])
async def list_rider_history(
    rider_id: int = Path(..., description="Rider ID"),
    store: SqlStore = Depends(get_store),
    projections: ProjectionBuilder = Depends(get_projections),
):
    """Delivered jobs, newest first."""
    await _require_rider(store, rider_id)
    return await projections.rider_jobs(rider_id, "history")


@router.get("/{rider_id}/current-job", response_model=CurrentJobResponse)
async def get_rider_current_job(
    rider_id: int = Path(..., description="Rider ID"),
    store: SqlStore = Depends(get_store),
    projections: ProjectionBuilder = Depends(get_projections),
):
    await _require_rider(store, rider_id)
    job = await projections.rider_current_job(rider_id)
    return CurrentJobResponse(has_active_job=job is not None, current_job=job)
