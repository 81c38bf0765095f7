"""
Parcel database model.

A parcel is created by a sender for a receiver and waits for a rider.
"""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.sql import func
from lastmile.app.db.session import Base
from lastmile.app.models.parcel_enums import ParcelStatus


class Parcel(Base):
    """
    Parcel model.
    
    status moves 1→2 only through the claim protocol and 2→3→4 only
    through the delivery status engine. Parcels are never deleted in
    normal operation.
    """
    __tablename__ = "parcels"
    
    parcel_id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    
    sender_id = Column(Integer, ForeignKey('users.user_id'), nullable=False, index=True)
    receiver_id = Column(Integer, ForeignKey('users.user_id'), nullable=False, index=True)
    
    description = Column(String(500), nullable=True)
    item_image = Column(String(1024), nullable=True)
    
    status = Column(Integer, default=int(ParcelStatus.WAITING_FOR_RIDER), nullable=False, index=True)
    
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
    
    def __repr__(self):
        return f"<Parcel(id={self.parcel_id}, sender_id={self.sender_id}, receiver_id={self.receiver_id}, status={self.status})>"
