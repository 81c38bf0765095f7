"""
Parcel Pydantic schemas.

Defines request models for parcel intake and the parcel-centric read
projections.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, List


class ParcelCreate(BaseModel):
    """Schema for creating a new parcel."""
    sender_id: int = Field(..., gt=0)
    receiver_id: int = Field(..., gt=0)
    sender_address_id: int = Field(..., gt=0, description="Pickup address, must belong to the sender")
    receiver_address_id: int = Field(..., gt=0, description="Drop-off address, must belong to the receiver")
    description: Optional[str] = Field(None, max_length=500)
    item_name: Optional[str] = Field(None, max_length=200)
    item_description: Optional[str] = Field(None, max_length=300)
    item_image: Optional[str] = Field(None, max_length=1024, description="Image URL")


class ParcelRecord(BaseModel):
    """Parcel row as stored."""
    parcel_id: int
    sender_id: int
    receiver_id: int
    description: Optional[str]
    item_image: Optional[str] = None
    status: int
    created_at: datetime
    updated_at: datetime
    
    class Config:
        from_attributes = True


class AddressView(BaseModel):
    address_id: int
    address_text: str
    formatted_address: Optional[str] = None
    place_id: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    created_at: datetime
    
    class Config:
        from_attributes = True


class Coordinates(BaseModel):
    """Point captured on the delivery when the parcel was created."""
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    address_text: str


class ContactView(BaseModel):
    """Sender or receiver as shown inside a projection."""
    user_id: int
    username: str
    phone: str
    profile_image: Optional[str] = None
    addresses: Optional[List[AddressView]] = None  # newest first
    pickup_coordinates: Optional[Coordinates] = None
    delivery_coordinates: Optional[Coordinates] = None


class ParcelView(BaseModel):
    """Parcel joined with its sender and receiver."""
    parcel_id: int
    sender_id: int
    receiver_id: int
    description: Optional[str]
    item_image: Optional[str] = None
    status: int
    status_label: str
    created_at: datetime
    updated_at: datetime
    sender: Optional[ContactView] = None
    receiver: Optional[ContactView] = None


class UserParcelView(ParcelView):
    """Parcel annotated with its most recent delivery."""
    delivery_id: Optional[int] = None
    rider_id: Optional[int] = None
    delivery_status: Optional[int] = None
    delivery_created_at: Optional[datetime] = None
    delivery_updated_at: Optional[datetime] = None
