"""
Rider database model.

Availability is not stored: a rider is busy while holding any delivery
that is PENDING or IN_TRANSIT.
"""

from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.sql import func
from lastmile.app.db.session import Base


class Rider(Base):
    """Rider (courier) model. Credentials are provisioned by the account layer."""
    __tablename__ = "riders"
    
    rider_id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    phone = Column(String(30), unique=True, index=True, nullable=False)
    password_hash = Column(String(255), nullable=True)
    profile_image = Column(String(1024), nullable=True)
    vehicle_image = Column(String(1024), nullable=True)
    license_plate = Column(String(30), nullable=True)
    
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
    
    def __repr__(self):
        return f"<Rider(id={self.rider_id}, name='{self.name}', phone='{self.phone}')>"
