"""
Assignment coordinator: the rider claim protocol.

Many riders may race for the same parcel. At most one wins, decided by
two compare-and-set writes against the store:

    1. Parcel.status  WAITING_FOR_RIDER -> RIDER_ACCEPTED
    2. Delivery       rider_id NULL     -> rider_id, status PENDING

No lock is held across the two writes. If (1) lands but (2) does not,
another claimant owns the delivery and (1) is compensated by moving the
parcel back to WAITING_FOR_RIDER.
"""

import logging
from typing import Awaitable, Callable, Optional

from lastmile.app.core.exceptions import (
    AlreadyClaimedError,
    ParcelNotClaimableError,
    PartialSyncError,
    RiderBusyError,
    StoreUnavailableError,
)
from lastmile.app.models.delivery import Delivery
from lastmile.app.models.parcel import Parcel
from lastmile.app.models.parcel_enums import (
    DeliveryStatus,
    ParcelStatus,
    UNFINISHED_DELIVERY_STATUSES,
)
from lastmile.app.services.store import SqlStore

logger = logging.getLogger("lastmile.assignment")

InvalidateHook = Callable[[], Awaitable[None]]


class AssignmentCoordinator:
    
    def __init__(self, store: SqlStore, on_change: Optional[InvalidateHook] = None):
        self.store = store
        self.on_change = on_change
    
    async def claim(self, parcel_id: int, rider_id: int) -> Delivery:
        """
        Claim a waiting parcel for a rider.
        
        Preconditions, checked in order:
        - rider holds no PENDING/IN_TRANSIT delivery
        - parcel exists and is WAITING_FOR_RIDER
        - no delivery of the parcel already has a rider
        
        Returns:
            The claimed Delivery row
        
        Raises:
            RiderBusyError, ParcelNotClaimableError, AlreadyClaimedError:
                expected race outcomes
            PartialSyncError: compensation could not be written
            StoreUnavailableError: store unreachable after retries
        """
        await self._ensure_rider_available(rider_id)
        await self._ensure_parcel_claimable(parcel_id)
        await self._ensure_not_already_claimed(parcel_id)
        
        if not await self._take_parcel(parcel_id):
            logger.info("Rider %s lost parcel %s at the parcel slot", rider_id, parcel_id)
            raise AlreadyClaimedError(parcel_id)
        
        if not await self._take_delivery(parcel_id, rider_id):
            logger.info("Rider %s lost parcel %s at the delivery slot, compensating", rider_id, parcel_id)
            await self._release_parcel(parcel_id, rider_id)
            raise AlreadyClaimedError(parcel_id)
        
        delivery = await self.store.first(
            Delivery, Delivery.parcel_id == parcel_id, Delivery.rider_id == rider_id,
            order_by=(Delivery.created_at.desc(), Delivery.delivery_id.desc()),
        )
        logger.info("Rider %s accepted parcel %s (delivery %s)", rider_id, parcel_id, delivery.delivery_id)
        
        if self.on_change is not None:
            await self.on_change()
        return delivery
    
    async def _ensure_rider_available(self, rider_id: int) -> None:
        existing_jobs = await self.store.count(
            Delivery,
            Delivery.rider_id == rider_id,
            Delivery.status.in_([int(s) for s in UNFINISHED_DELIVERY_STATUSES]),
        )
        if existing_jobs > 0:
            logger.info("Rider %s is busy with %d unfinished job(s)", rider_id, existing_jobs)
            raise RiderBusyError(rider_id, existing_jobs)
    
    async def _ensure_parcel_claimable(self, parcel_id: int) -> None:
        parcel = await self.store.first(Parcel, Parcel.parcel_id == parcel_id)
        if parcel is None:
            raise ParcelNotClaimableError(parcel_id)
        if parcel.status != ParcelStatus.WAITING_FOR_RIDER:
            raise ParcelNotClaimableError(parcel_id, current_status=parcel.status)
    
    async def _ensure_not_already_claimed(self, parcel_id: int) -> None:
        claimed = await self.store.count(
            Delivery, Delivery.parcel_id == parcel_id, Delivery.rider_id.is_not(None)
        )
        if claimed:
            raise AlreadyClaimedError(parcel_id)
    
    async def _take_parcel(self, parcel_id: int) -> bool:
        affected = await self.store.conditional_update(
            Parcel,
            {"status": int(ParcelStatus.RIDER_ACCEPTED)},
            Parcel.parcel_id == parcel_id,
            Parcel.status == int(ParcelStatus.WAITING_FOR_RIDER),
        )
        return affected > 0
    
    async def _take_delivery(self, parcel_id: int, rider_id: int) -> bool:
        affected = await self.store.conditional_update(
            Delivery,
            {"rider_id": rider_id, "status": int(DeliveryStatus.PENDING)},
            Delivery.parcel_id == parcel_id,
            Delivery.rider_id.is_(None),
        )
        return affected > 0
    
    async def _release_parcel(self, parcel_id: int, rider_id: int) -> None:
        """Compensate a won parcel slot after losing the delivery slot."""
        try:
            affected = await self.store.conditional_update(
                Parcel,
                {"status": int(ParcelStatus.WAITING_FOR_RIDER)},
                Parcel.parcel_id == parcel_id,
                Parcel.status == int(ParcelStatus.RIDER_ACCEPTED),
            )
        except StoreUnavailableError as e:
            logger.error(
                "Compensation for parcel %s (rider %s) could not be written: %s",
                parcel_id, rider_id, e.message
            )
            raise PartialSyncError(
                "Claim compensation failed; parcel may be stuck in RIDER_ACCEPTED",
                details={"stage": "claim_compensation", "parcel_id": parcel_id, "rider_id": rider_id},
            ) from e
        if affected == 0:
            logger.error("Compensation for parcel %s matched no row", parcel_id)
            raise PartialSyncError(
                "Claim compensation matched no parcel row",
                details={"stage": "claim_compensation", "parcel_id": parcel_id, "rider_id": rider_id},
            )
