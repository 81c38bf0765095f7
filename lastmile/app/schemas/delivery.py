"""
Delivery Pydantic schemas.

Request and response models for the claim protocol, status transitions
and rider job projections.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List, Union

from lastmile.app.schemas.parcel import ParcelRecord, ParcelView


class DeliveryRecord(BaseModel):
    """Delivery row as stored."""
    delivery_id: int
    parcel_id: int
    rider_id: Optional[int]
    status: int
    pickup_latitude: Optional[float] = None
    pickup_longitude: Optional[float] = None
    pickup_address: Optional[str] = None
    delivery_latitude: Optional[float] = None
    delivery_longitude: Optional[float] = None
    delivery_address: Optional[str] = None
    pickup_image: Optional[str] = None
    delivery_image: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    
    class Config:
        from_attributes = True


class ClaimRequest(BaseModel):
    """Rider asking to accept a parcel."""
    rider_id: int = Field(..., gt=0)


class ClaimResponse(BaseModel):
    success: bool = True
    message: str
    delivery: DeliveryRecord
    parcel_status: int


class StatusUpdate(BaseModel):
    """New delivery status, as 0-2 or a name, with an optional base64 proof photo."""
    status: Union[int, str]
    image: Optional[str] = None


class StatusUpdateResponse(BaseModel):
    success: bool = True
    message: str
    delivery_id: int
    old_status: int
    new_status: int
    status_description: str
    parcel_status: int
    delivery: DeliveryRecord
    parcel: Optional[ParcelRecord] = None


class RiderJobView(BaseModel):
    """A rider's delivery joined with its parcel and contacts."""
    delivery_id: int
    parcel_id: int
    rider_id: Optional[int]
    status: int
    status_label: str
    pickup_image: Optional[str] = None
    delivery_image: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    parcel: ParcelView


class CurrentJobResponse(BaseModel):
    success: bool = True
    has_active_job: bool
    current_job: Optional[RiderJobView] = None
