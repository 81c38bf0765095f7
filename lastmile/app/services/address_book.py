"""
User address book.

The primary address is the earliest created one; it cannot be deleted.
"""

import logging
from typing import List

from lastmile.app.core.exceptions import ForbiddenError, NotFoundError
from lastmile.app.models.user import User, UserAddress
from lastmile.app.schemas.user import AddressCreate
from lastmile.app.services.store import SqlStore

logger = logging.getLogger("lastmile.addresses")


async def get_user(store: SqlStore, user_id: int) -> User:
    user = await store.first(User, User.user_id == user_id)
    if user is None:
        raise NotFoundError("User", user_id)
    return user


async def add_address(store: SqlStore, user_id: int, data: AddressCreate) -> UserAddress:
    await get_user(store, user_id)
    (address,) = await store.insert(UserAddress(user_id=user_id, **data.model_dump()))
    return address


async def list_addresses(store: SqlStore, user_id: int) -> List[UserAddress]:
    """Addresses newest first."""
    return await store.get(
        UserAddress,
        UserAddress.user_id == user_id,
        order_by=(UserAddress.created_at.desc(), UserAddress.address_id.desc()),
    )


async def primary_address(store: SqlStore, user_id: int):
    return await store.first(
        UserAddress,
        UserAddress.user_id == user_id,
        order_by=(UserAddress.created_at.asc(), UserAddress.address_id.asc()),
    )


async def delete_address(store: SqlStore, user_id: int, address_id: int) -> UserAddress:
    """
    Delete one address of a user.
    
    Raises:
        ForbiddenError: address is the user's primary address
        NotFoundError: no such address for this user
    """
    primary = await primary_address(store, user_id)
    if primary is not None and primary.address_id == address_id:
        raise ForbiddenError(
            "The primary address cannot be deleted",
            details={"user_id": user_id, "address_id": address_id},
        )
    
    deleted = await store.delete(
        UserAddress, UserAddress.address_id == address_id, UserAddress.user_id == user_id
    )
    if not deleted:
        raise NotFoundError("Address", address_id)
    logger.info("Deleted address %s of user %s", address_id, user_id)
    return deleted[0]
