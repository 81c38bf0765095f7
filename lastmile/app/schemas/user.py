"""
User, rider and address schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List

from lastmile.app.schemas.parcel import AddressView


class UserResponse(BaseModel):
    user_id: int
    username: str
    phone: str
    profile_image: Optional[str] = None
    created_at: datetime
    
    class Config:
        from_attributes = True


class RiderResponse(BaseModel):
    rider_id: int
    name: str
    phone: str
    profile_image: Optional[str] = None
    vehicle_image: Optional[str] = None
    license_plate: Optional[str] = None
    created_at: datetime
    
    class Config:
        from_attributes = True


class AddressCreate(BaseModel):
    """Address with coordinates already resolved by the client or geocoder."""
    address_text: str = Field(..., min_length=1, max_length=500)
    formatted_address: Optional[str] = Field(None, max_length=500)
    place_id: Optional[str] = Field(None, max_length=255)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)


class AddressListResponse(BaseModel):
    user_id: int
    addresses: List[AddressView]


class AddressDeleteResponse(BaseModel):
    success: bool = True
    message: str
    deleted_address: AddressView
