"""
Delivery database model.

The job record for moving one parcel. Created with the parcel (no rider),
claimed by setting rider_id, then advanced by the status engine.
"""

from sqlalchemy import Column, Integer, String, Float, DateTime, ForeignKey, Index, text
from sqlalchemy.sql import func
from lastmile.app.db.session import Base
from lastmile.app.models.parcel_enums import DeliveryStatus


class Delivery(Base):
    """
    Delivery model.
    
    Pickup and drop-off coordinates are captured from the sender and
    receiver addresses when the parcel is created, so later address edits
    do not move an existing job.
    """
    __tablename__ = "deliveries"
    
    delivery_id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    
    parcel_id = Column(Integer, ForeignKey('parcels.parcel_id'), nullable=False, index=True)
    rider_id = Column(Integer, ForeignKey('riders.rider_id'), nullable=True)
    
    status = Column(Integer, default=int(DeliveryStatus.PENDING), nullable=False)
    
    # Captured at parcel creation
    pickup_latitude = Column(Float, nullable=True)
    pickup_longitude = Column(Float, nullable=True)
    pickup_address = Column(String(500), nullable=True)
    delivery_latitude = Column(Float, nullable=True)
    delivery_longitude = Column(Float, nullable=True)
    delivery_address = Column(String(500), nullable=True)
    
    # Proof photos (best-effort)
    pickup_image = Column(String(1024), nullable=True)
    delivery_image = Column(String(1024), nullable=True)
    
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
    
    __table_args__ = (
        # Availability scan: unfinished jobs per rider
        Index('ix_deliveries_rider_status', 'rider_id', 'status'),
        # One non-terminal delivery per parcel
        Index(
            'ix_deliveries_open_parcel', 'parcel_id', unique=True,
            postgresql_where=text(f"status != {int(DeliveryStatus.DELIVERED)}"),
            sqlite_where=text(f"status != {int(DeliveryStatus.DELIVERED)}"),
        ),
    )
    
    def __repr__(self):
        return f"<Delivery(id={self.delivery_id}, parcel_id={self.parcel_id}, rider_id={self.rider_id}, status={self.status})>"
