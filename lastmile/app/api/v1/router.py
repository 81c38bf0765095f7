"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from lastmile.app.api.v1.endpoints import parcels, deliveries, riders, users

router = APIRouter()

# Parcel intake and parcel projections
router.include_router(parcels.router)

# Claim protocol, status transitions, job board
router.include_router(deliveries.router)

# Rider profile and job lists
router.include_router(riders.router)

# User profile and address book
router.include_router(users.router)
