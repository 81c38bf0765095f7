"""
Status mapping between Delivery and Parcel.

The single source of truth for the two-field synchronization rule:

    Delivery.status    Parcel.status
    PENDING (0)        RIDER_ACCEPTED (2)
    IN_TRANSIT (1)     RIDER_PICKED_UP (3)
    DELIVERED (2)      DELIVERED (4)

Also parses legacy numeric/text status input and holds the delivery
transition allow-list.
"""

from typing import Any, Dict, FrozenSet, Optional, Tuple

from lastmile.app.core.exceptions import UnknownStatusError
from lastmile.app.models.parcel_enums import DeliveryStatus, ParcelStatus


DELIVERY_TO_PARCEL: Dict[DeliveryStatus, ParcelStatus] = {
    DeliveryStatus.PENDING: ParcelStatus.RIDER_ACCEPTED,
    DeliveryStatus.IN_TRANSIT: ParcelStatus.RIDER_PICKED_UP,
    DeliveryStatus.DELIVERED: ParcelStatus.DELIVERED,
}

PARCEL_TO_DELIVERY: Dict[ParcelStatus, DeliveryStatus] = {
    parcel: delivery for delivery, parcel in DELIVERY_TO_PARCEL.items()
}

DELIVERY_LABELS: Dict[DeliveryStatus, str] = {
    DeliveryStatus.PENDING: "pending",
    DeliveryStatus.IN_TRANSIT: "in_transit",
    DeliveryStatus.DELIVERED: "delivered",
}

PARCEL_LABELS: Dict[ParcelStatus, str] = {
    ParcelStatus.WAITING_FOR_RIDER: "waitingForRider",
    ParcelStatus.RIDER_ACCEPTED: "riderAccepted",
    ParcelStatus.RIDER_PICKED_UP: "riderPickedUp",
    ParcelStatus.DELIVERED: "delivered",
}

PARCEL_VOCABULARY: Dict[str, ParcelStatus] = {
    "waitingforrider": ParcelStatus.WAITING_FOR_RIDER,
    "waiting_for_rider": ParcelStatus.WAITING_FOR_RIDER,
    "rideraccepted": ParcelStatus.RIDER_ACCEPTED,
    "rider_accepted": ParcelStatus.RIDER_ACCEPTED,
    "riderpickedup": ParcelStatus.RIDER_PICKED_UP,
    "rider_picked_up": ParcelStatus.RIDER_PICKED_UP,
    "delivered": ParcelStatus.DELIVERED,
}

DELIVERY_VOCABULARY: Dict[str, DeliveryStatus] = {
    "pending": DeliveryStatus.PENDING,
    "in_transit": DeliveryStatus.IN_TRANSIT,
    "intransit": DeliveryStatus.IN_TRANSIT,
    "delivered": DeliveryStatus.DELIVERED,
}

# Forward edges only; same-status re-application is handled separately
DELIVERY_TRANSITIONS: FrozenSet[Tuple[DeliveryStatus, DeliveryStatus]] = frozenset({
    (DeliveryStatus.PENDING, DeliveryStatus.IN_TRANSIT),
    (DeliveryStatus.IN_TRANSIT, DeliveryStatus.DELIVERED),
})


def parcel_status_for(delivery_status: int) -> ParcelStatus:
    """Mirror a Delivery status onto the Parcel status it implies."""
    try:
        return DELIVERY_TO_PARCEL[DeliveryStatus(delivery_status)]
    except (ValueError, KeyError):
        raise UnknownStatusError(delivery_status, kind="delivery status")


def delivery_status_for(parcel_status: int) -> Optional[DeliveryStatus]:
    """
    Reverse mapping. WAITING_FOR_RIDER has no delivery counterpart and
    maps to None.
    """
    try:
        parcel = ParcelStatus(parcel_status)
    except ValueError:
        raise UnknownStatusError(parcel_status, kind="parcel status")
    return PARCEL_TO_DELIVERY.get(parcel)


def _parse(value: Any, enum_cls, vocabulary: Dict[str, Any], kind: str):
    if isinstance(value, bool):
        raise UnknownStatusError(value, kind=kind)
    if isinstance(value, int):
        try:
            return enum_cls(value)
        except ValueError:
            raise UnknownStatusError(value, kind=kind)
    if isinstance(value, str):
        text = value.strip().lower()
        if text.isdigit():
            return _parse(int(text), enum_cls, vocabulary, kind)
        if text in vocabulary:
            return vocabulary[text]
    raise UnknownStatusError(value, kind=kind)


def parse_parcel_status(value: Any) -> ParcelStatus:
    """Accept 1-4, "1"-"4" or a case-insensitive legacy name."""
    return _parse(value, ParcelStatus, PARCEL_VOCABULARY, "parcel status")


def parse_delivery_status(value: Any) -> DeliveryStatus:
    """Accept 0-2, "0"-"2" or a case-insensitive name."""
    return _parse(value, DeliveryStatus, DELIVERY_VOCABULARY, "delivery status")


def delivery_label(status: int) -> str:
    return DELIVERY_LABELS[DeliveryStatus(status)]


def parcel_label(status: int) -> str:
    return PARCEL_LABELS[ParcelStatus(status)]


def is_allowed_transition(current: int, new: int) -> bool:
    """Forward edge of the delivery state machine, or an idempotent re-send."""
    current, new = DeliveryStatus(current), DeliveryStatus(new)
    return current == new or (current, new) in DELIVERY_TRANSITIONS
