"""
Rider live location schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List


class LocationUpdate(BaseModel):
    """GPS fix reported by the rider app."""
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    accuracy: Optional[float] = Field(None, ge=0)
    heading: Optional[float] = Field(None, ge=0, lt=360)
    speed: Optional[float] = Field(None, ge=0)


class LocationRider(BaseModel):
    rider_id: int
    name: str
    license_plate: Optional[str] = None
    
    class Config:
        from_attributes = True


class RiderLocationView(BaseModel):
    rider_id: int
    latitude: float
    longitude: float
    accuracy: Optional[float] = None
    heading: Optional[float] = None
    speed: Optional[float] = None
    updated_at: datetime
    rider: Optional[LocationRider] = None


class LocationUpdateResponse(BaseModel):
    success: bool = True
    message: str
    location: RiderLocationView


class RiderIdsRequest(BaseModel):
    rider_ids: List[int] = Field(..., max_length=500)
