"""
User API Endpoints.

User list, profiles and address book.
"""

from typing import List

from fastapi import APIRouter, Depends, Path, status

from lastmile.app.core.dependencies import get_projections, get_store
from lastmile.app.schemas.parcel import AddressView
from lastmile.app.schemas.user import (
    AddressCreate,
    AddressDeleteResponse,
    AddressListResponse,
    UserResponse,
)
from lastmile.app.services import address_book
from lastmile.app.services.projections import ProjectionBuilder
from lastmile.app.services.store import SqlStore

router = APIRouter(prefix="/users", tags=["Users"])


@router.get("", response_model=List[UserResponse])
async def list_users(
    projections: ProjectionBuilder = Depends(get_projections),
):
    """All users ordered by username."""
    return await projections.users()


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(
    user_id: int = Path(..., description="User ID"),
    store: SqlStore = Depends(get_store),
):
    return UserResponse.model_validate(await address_book.get_user(store, user_id))


@router.post("/{user_id}/addresses", response_model=AddressView, status_code=status.HTTP_201_CREATED)
async def add_user_address(
    user_id: int = Path(..., description="User ID"),
    address: AddressCreate = ...,
    store: SqlStore = Depends(get_store),
    projections: ProjectionBuilder = Depends(get_projections),
):
    created = await address_book.add_address(store, user_id, address)
    await projections.invalidate()
    return AddressView.model_validate(created)


@router.get("/{user_id}/addresses", response_model=AddressListResponse)
async def list_user_addresses(
    user_id: int = Path(..., description="User ID"),
    store: SqlStore = Depends(get_store),
):
    """Addresses newest first."""
    addresses = await address_book.list_addresses(store, user_id)
    return AddressListResponse(
        user_id=user_id,
        addresses=[AddressView.model_validate(a) for a in addresses],
    )


@router.delete("/{user_id}/addresses/{address_id}", response_model=AddressDeleteResponse)
async def delete_user_address(
    user_id: int = Path(..., description="User ID"),
    address_id: int = Path(..., description="Address ID"),
    store: SqlStore = Depends(get_store),
    projections: ProjectionBuilder = Depends(get_projections),
):
    """
    Delete an address.
    
    The user's primary (first) address is protected and returns 403.
    """
    deleted = await address_book.delete_address(store, user_id, address_id)
    await projections.invalidate()
    return AddressDeleteResponse(
        message="Address deleted",
        deleted_address=AddressView.model_validate(deleted),
    )
