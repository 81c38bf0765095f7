"""
Parcel and Delivery status enumerations.

Both are stored as integers. Parcel carries the coarse lifecycle, Delivery
the rider's job progress; the two are kept in the fixed correspondence
defined in services.status_mapper.
"""

import enum


class ParcelStatus(enum.IntEnum):
    """
    Parcel status enumeration.
    
    Status flow:
        WAITING_FOR_RIDER → RIDER_ACCEPTED → RIDER_PICKED_UP → DELIVERED
    """
    WAITING_FOR_RIDER = 1
    RIDER_ACCEPTED = 2
    RIDER_PICKED_UP = 3
    DELIVERED = 4


class DeliveryStatus(enum.IntEnum):
    """
    Delivery status enumeration.
    
    Status flow:
        PENDING → IN_TRANSIT → DELIVERED
    """
    PENDING = 0
    IN_TRANSIT = 1
    DELIVERED = 2


# A rider holding a delivery in one of these is unavailable
UNFINISHED_DELIVERY_STATUSES = (DeliveryStatus.PENDING, DeliveryStatus.IN_TRANSIT)
