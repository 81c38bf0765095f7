"""
Delivery API Endpoints.

Rider claim protocol, delivery status transitions and the available-job
board.
"""

from typing import List

from fastapi import APIRouter, Depends, Path, status

from lastmile.app.core.dependencies import (
    get_assignment_coordinator,
    get_projections,
    get_store,
    get_transition_engine,
)
from lastmile.app.core.exceptions import NotFoundError
from lastmile.app.models.parcel_enums import ParcelStatus
from lastmile.app.models.rider import Rider
from lastmile.app.schemas.delivery import (
    ClaimRequest,
    ClaimResponse,
    DeliveryRecord,
    StatusUpdate,
    StatusUpdateResponse,
)
from lastmile.app.schemas.parcel import ParcelRecord, ParcelView
from lastmile.app.services.assignment import AssignmentCoordinator
from lastmile.app.services.projections import ProjectionBuilder
from lastmile.app.services.status_transition import StatusTransitionEngine, TransitionResult
from lastmile.app.services.store import SqlStore

router = APIRouter(tags=["Deliveries"])


def _status_response(result: TransitionResult, message: str) -> StatusUpdateResponse:
    return StatusUpdateResponse(
        message=message,
        delivery_id=result.delivery.delivery_id,
        old_status=int(result.old_status),
        new_status=int(result.new_status),
        status_description=result.status_label,
        parcel_status=int(result.parcel_status),
        delivery=DeliveryRecord.model_validate(result.delivery),
        parcel=ParcelRecord.model_validate(result.parcel) if result.parcel else None,
    )


@router.post("/parcels/{parcel_id}/accept", response_model=ClaimResponse, status_code=status.HTTP_201_CREATED)
async def accept_parcel(
    parcel_id: int = Path(..., description="Parcel ID"),
    claim: ClaimRequest = ...,
    store: SqlStore = Depends(get_store),
    coordinator: AssignmentCoordinator = Depends(get_assignment_coordinator),
):
    """
    Accept a waiting parcel as a rider.
    
    Validates:
    - Rider exists
    - Rider has no unfinished job
    - Parcel is still WAITING_FOR_RIDER and unclaimed
    
    Losing a race returns 409 with ERR_RIDER_BUSY,
    ERR_PARCEL_NOT_CLAIMABLE or ERR_ALREADY_CLAIMED.
    """
    if await store.first(Rider, Rider.rider_id == claim.rider_id) is None:
        raise NotFoundError("Rider", claim.rider_id)
    
    delivery = await coordinator.claim(parcel_id, claim.rider_id)
    
    return ClaimResponse(
        message="Parcel accepted",
        delivery=DeliveryRecord.model_validate(delivery),
        parcel_status=int(ParcelStatus.RIDER_ACCEPTED),
    )


@router.patch("/deliveries/{delivery_id}/status", response_model=StatusUpdateResponse)
async def update_delivery_status(
    delivery_id: int = Path(..., description="Delivery ID"),
    update: StatusUpdate = ...,
    engine: StatusTransitionEngine = Depends(get_transition_engine),
):
    """
    Move a delivery to a new status and sync its parcel.
    
    An optional base64 image is stored as pickup proof (status 1) or
    delivery proof (status 2); an upload failure never fails the update.
    """
    result = await engine.transition(delivery_id, update.status, proof_image=update.image)
    return _status_response(result, "Status updated")


@router.post("/deliveries/{delivery_id}/reconcile", response_model=StatusUpdateResponse)
async def reconcile_delivery(
    delivery_id: int = Path(..., description="Delivery ID"),
    engine: StatusTransitionEngine = Depends(get_transition_engine),
):
    """Re-sync the parcel status from the delivery after a partial failure."""
    result = await engine.reconcile(delivery_id)
    return _status_response(result, "Parcel status reconciled")


@router.get("/deliveries/available", response_model=List[ParcelView])
async def list_available_deliveries(
    projections: ProjectionBuilder = Depends(get_projections),
):
    """Parcels waiting for a rider with pickup and drop-off coordinates."""
    return await projections.available_parcels()
