"""
Rider live location model.

One row per rider holding the last reported GPS fix; each report
overwrites the previous one.
"""

from sqlalchemy import Column, Integer, Float, ForeignKey, DateTime
from sqlalchemy.sql import func
from lastmile.app.db.session import Base


class RiderLocation(Base):
    """Last known position of a rider."""
    __tablename__ = "rider_locations"
    
    rider_id = Column(Integer, ForeignKey('riders.rider_id'), primary_key=True)
    
    # GPS fix
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    accuracy = Column(Float, nullable=True)  # meters
    heading = Column(Float, nullable=True)  # degrees
    speed = Column(Float, nullable=True)  # m/s
    
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    
    def __repr__(self):
        return f"<RiderLocation(rider_id={self.rider_id}, lat={self.latitude}, lng={self.longitude})>"
