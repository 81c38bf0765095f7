"""
Parcel API Endpoints.

Parcel intake and parcel-centric read projections.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query, status

from lastmile.app.core.dependencies import get_projections, get_store
from lastmile.app.schemas.delivery import DeliveryRecord
from lastmile.app.schemas.parcel import ParcelCreate, ParcelRecord, ParcelView, UserParcelView
from lastmile.app.services.parcel_intake import create_parcel
from lastmile.app.services.projections import ProjectionBuilder
from lastmile.app.services.status_mapper import parse_parcel_status
from lastmile.app.services.store import SqlStore

router = APIRouter(tags=["Parcels"])


@router.post("/parcels", status_code=status.HTTP_201_CREATED)
async def create_new_parcel(
    parcel_data: ParcelCreate,
    store: SqlStore = Depends(get_store),
    projections: ProjectionBuilder = Depends(get_projections),
):
    """
    Create a parcel and its unclaimed delivery.
    
    Validates:
    - Sender and receiver addresses exist and belong to them
    
    The parcel starts WAITING_FOR_RIDER; the delivery starts PENDING with
    no rider and the route captured from the two addresses.
    """
    parcel, delivery = await create_parcel(store, parcel_data, on_change=projections.invalidate)
    
    return {
        "success": True,
        "message": "Parcel created",
        "parcel": ParcelRecord.model_validate(parcel),
        "delivery": DeliveryRecord.model_validate(delivery),
    }


@router.get("/parcels", response_model=List[ParcelView])
async def list_parcels(
    status_filter: Optional[str] = Query(None, alias="status", description="1-4 or a status name"),
    projections: ProjectionBuilder = Depends(get_projections),
):
    """List all parcels newest first, optionally filtered by status."""
    parcel_status = parse_parcel_status(status_filter) if status_filter is not None else None
    return await projections.all_parcels(parcel_status)


@router.get("/users/{user_id}/parcels", response_model=List[UserParcelView])
async def list_user_parcels(
    user_id: int = Path(..., description="User ID"),
    projections: ProjectionBuilder = Depends(get_projections),
):
    """
    Parcels the user sends or receives.
    
    Each carries its most recent delivery (rider and delivery status).
    """
    return await projections.user_parcels(user_id)
