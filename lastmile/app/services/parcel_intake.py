"""
Parcel intake.

Creates a parcel together with its delivery row. Pickup and drop-off
coordinates are copied from the chosen addresses at this moment, so the
job keeps its route even if the users edit their addresses later.
"""

import logging
from typing import Awaitable, Callable, Optional, Tuple

from lastmile.app.core.exceptions import NotFoundError, ValidationError
from lastmile.app.models.delivery import Delivery
from lastmile.app.models.parcel import Parcel
from lastmile.app.models.parcel_enums import DeliveryStatus, ParcelStatus
from lastmile.app.models.user import UserAddress
from lastmile.app.schemas.parcel import ParcelCreate
from lastmile.app.services.store import SqlStore

logger = logging.getLogger("lastmile.intake")

DEFAULT_DESCRIPTION = "No description"


def compose_description(
    description: Optional[str], item_name: Optional[str], item_description: Optional[str]
) -> str:
    if description:
        return description
    if item_name and item_description:
        return f"{item_name} - {item_description}"
    return item_name or DEFAULT_DESCRIPTION


async def _owned_address(store: SqlStore, address_id: int, user_id: int, role: str) -> UserAddress:
    address = await store.first(
        UserAddress, UserAddress.address_id == address_id, UserAddress.user_id == user_id
    )
    if address is None:
        raise NotFoundError(f"{role} address", address_id)
    return address


async def create_parcel(
    store: SqlStore,
    data: ParcelCreate,
    on_change: Optional[Callable[[], Awaitable[None]]] = None,
) -> Tuple[Parcel, Delivery]:
    """
    Create a WAITING_FOR_RIDER parcel and its unclaimed PENDING delivery.
    
    If the delivery insert fails the parcel is deleted again and the
    original error propagates.
    """
    if data.sender_id == data.receiver_id:
        raise ValidationError("Sender and receiver must be different users")
    
    sender_address = await _owned_address(store, data.sender_address_id, data.sender_id, "Sender")
    receiver_address = await _owned_address(store, data.receiver_address_id, data.receiver_id, "Receiver")
    
    (parcel,) = await store.insert(Parcel(
        sender_id=data.sender_id,
        receiver_id=data.receiver_id,
        description=compose_description(data.description, data.item_name, data.item_description),
        item_image=data.item_image,
        status=int(ParcelStatus.WAITING_FOR_RIDER),
    ))
    
    try:
        (delivery,) = await store.insert(Delivery(
            parcel_id=parcel.parcel_id,
            rider_id=None,
            status=int(DeliveryStatus.PENDING),
            pickup_latitude=sender_address.latitude,
            pickup_longitude=sender_address.longitude,
            pickup_address=sender_address.formatted_address or sender_address.address_text,
            delivery_latitude=receiver_address.latitude,
            delivery_longitude=receiver_address.longitude,
            delivery_address=receiver_address.formatted_address or receiver_address.address_text,
        ))
    except Exception:
        logger.error("Delivery insert failed for parcel %s, removing parcel", parcel.parcel_id)
        await store.session.rollback()
        try:
            await store.delete(Parcel, Parcel.parcel_id == parcel.parcel_id)
        except Exception:
            logger.exception("Could not remove orphaned parcel %s", parcel.parcel_id)
        raise
    
    logger.info("Parcel %s created with delivery %s", parcel.parcel_id, delivery.delivery_id)
    if on_change is not None:
        await on_change()
    return parcel, delivery
