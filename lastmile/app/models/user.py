"""
User and address database models.

Users send and receive parcels. A user has many addresses; the earliest
created one is the primary address and cannot be deleted.
"""

from sqlalchemy import Column, Integer, String, Float, DateTime, ForeignKey
from sqlalchemy.sql import func
from lastmile.app.db.session import Base


class User(Base):
    """Sender/receiver account. Credentials are provisioned by the account layer."""
    __tablename__ = "users"
    
    user_id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    username = Column(String(100), nullable=False, index=True)
    phone = Column(String(30), unique=True, index=True, nullable=False)
    password_hash = Column(String(255), nullable=True)
    profile_image = Column(String(1024), nullable=True)
    
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
    
    def __repr__(self):
        return f"<User(id={self.user_id}, username='{self.username}', phone='{self.phone}')>"


class UserAddress(Base):
    """Saved address with coordinates."""
    __tablename__ = "user_addresses"
    
    address_id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey('users.user_id'), nullable=False, index=True)
    
    address_text = Column(String(500), nullable=False)
    formatted_address = Column(String(500), nullable=True)
    place_id = Column(String(255), nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    
    def __repr__(self):
        return f"<UserAddress(id={self.address_id}, user_id={self.user_id})>"
