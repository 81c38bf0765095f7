"""
Delivery status transition engine.

Applies a status change to a Delivery and mirrors it onto its Parcel.
The Delivery is written first; if the Parcel write then fails the two
rows disagree, which is reported as PartialSyncError so it can be
repaired with reconcile(). Proof photos are best-effort and never decide
the outcome of a transition.

The parcel mirror is itself a compare-and-set: it only lands while the
delivery still holds the status being mirrored, so a slow request can
never overwrite the mirror of a newer one.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, AsyncContextManager, Awaitable, Callable, Optional, Set

from sqlalchemy import select

from lastmile.app.core.config import settings
from lastmile.app.core.exceptions import (
    DeliveryNotClaimedError,
    InvalidTransitionError,
    NotFoundError,
    PartialSyncError,
    StoreUnavailableError,
    TransitionConflictError,
)
from lastmile.app.models.delivery import Delivery
from lastmile.app.models.parcel import Parcel
from lastmile.app.models.parcel_enums import DeliveryStatus, ParcelStatus
from lastmile.app.services.image_store import ImageStore
from lastmile.app.services.status_mapper import (
    delivery_label,
    is_allowed_transition,
    parcel_status_for,
    parse_delivery_status,
)
from lastmile.app.services.store import SqlStore

logger = logging.getLogger("lastmile.transitions")

InvalidateHook = Callable[[], Awaitable[None]]
StoreFactory = Callable[[], AsyncContextManager[SqlStore]]

# Which column receives the proof photo for a given new status
PROOF_IMAGE_FIELDS = {
    DeliveryStatus.IN_TRANSIT: "pickup_image",
    DeliveryStatus.DELIVERED: "delivery_image",
}

# Uploads that outlived their request, and the writes saving their URLs
_background: Set[asyncio.Future] = set()


def _track(task: asyncio.Future) -> None:
    _background.add(task)
    task.add_done_callback(_background.discard)


async def drain_background() -> None:
    """Wait for late proof-image uploads and their URL writes to finish."""
    while _background:
        await asyncio.gather(*list(_background), return_exceptions=True)


@dataclass
class TransitionResult:
    delivery: Delivery
    parcel: Parcel
    old_status: DeliveryStatus
    new_status: DeliveryStatus
    parcel_status: ParcelStatus
    status_label: str


class StatusTransitionEngine:

    def __init__(
        self,
        store: SqlStore,
        image_store: Optional[ImageStore] = None,
        on_change: Optional[InvalidateHook] = None,
        enforce_forward: Optional[bool] = None,
        image_timeout: Optional[float] = None,
        late_store: Optional[StoreFactory] = None,
    ):
        self.store = store
        self.image_store = image_store
        self.on_change = on_change
        self.enforce_forward = settings.enforce_forward_transitions if enforce_forward is None else enforce_forward
        self.image_timeout = settings.image_upload_timeout_seconds if image_timeout is None else image_timeout
        # Opens a store for URL writes that finish after the request is gone;
        # without it a timed-out upload is cancelled.
        self.late_store = late_store
    
    async def transition(
        self,
        delivery_id: int,
        new_status: Any,
        proof_image: Optional[str] = None,
    ) -> TransitionResult:
        """
        Move a delivery to new_status and mirror the parcel.
        
        Args:
            delivery_id: Delivery to update
            new_status: 0/1/2 or a status name
            proof_image: Optional base64 photo for pickup/drop-off
        
        Raises:
            UnknownStatusError: new_status outside the vocabulary
            NotFoundError: delivery does not exist
            DeliveryNotClaimedError: no rider has accepted the delivery yet
            InvalidTransitionError: edge not allowed (when enforced)
            TransitionConflictError: delivery changed concurrently
            PartialSyncError: delivery written, parcel mirror not
            StoreUnavailableError: store unreachable after retries
        """
        status = parse_delivery_status(new_status)
        
        delivery = await self._load_delivery(delivery_id)
        # Only the claim protocol may take a parcel off WAITING_FOR_RIDER
        if delivery.rider_id is None:
            raise DeliveryNotClaimedError(delivery_id)
        old_status = DeliveryStatus(delivery.status)
        if self.enforce_forward and not is_allowed_transition(old_status, status):
            raise InvalidTransitionError(int(old_status), int(status))
        
        parcel_status = parcel_status_for(status)
        
        upload = self._start_upload(delivery_id, status, proof_image)
        try:
            affected = await self.store.conditional_update(
                Delivery,
                {"status": int(status)},
                Delivery.delivery_id == delivery_id,
                Delivery.status == int(old_status),
                Delivery.rider_id.is_not(None),
            )
        except BaseException:
            self._abandon_upload(upload, delivery_id)
            raise
        if affected == 0:
            self._abandon_upload(upload, delivery_id)
            raise TransitionConflictError(delivery_id, int(old_status))
        
        # Delivery row changed: invalidate even if the mirror fails
        try:
            await self._mirror_parcel(delivery, status, parcel_status, upload, forward_only=self.enforce_forward)
            await self._attach_proof_image(delivery_id, status, upload)
        finally:
            if self.on_change is not None:
                await self.on_change()
        
        logger.info(
            "Delivery %s moved %s -> %s (parcel %s -> %s)",
            delivery_id, old_status.name, status.name, delivery.parcel_id, parcel_status.name
        )
        return await self._result(delivery_id, old_status, status, parcel_status)
    
    async def reconcile(self, delivery_id: int) -> TransitionResult:
        """Re-apply the parcel mirror from the delivery's current status."""
        delivery = await self._load_delivery(delivery_id)
        status = DeliveryStatus(delivery.status)
        if delivery.rider_id is None:
            parcel_status = ParcelStatus.WAITING_FOR_RIDER
        else:
            parcel_status = parcel_status_for(status)
        
        await self._mirror_parcel(delivery, status, parcel_status, None, forward_only=False)
        if self.on_change is not None:
            await self.on_change()
        
        logger.info("Reconciled parcel %s to %s from delivery %s", delivery.parcel_id, parcel_status.name, delivery_id)
        return await self._result(delivery_id, status, status, parcel_status)
    
    async def _load_delivery(self, delivery_id: int) -> Delivery:
        delivery = await self.store.first(Delivery, Delivery.delivery_id == delivery_id)
        if delivery is None:
            raise NotFoundError("Delivery", delivery_id)
        return delivery
    
    async def _mirror_parcel(
        self,
        delivery: Delivery,
        status: DeliveryStatus,
        parcel_status: ParcelStatus,
        upload: Optional[asyncio.Task],
        forward_only: bool,
    ) -> None:
        details = {
            "delivery_id": delivery.delivery_id,
            "parcel_id": delivery.parcel_id,
            "delivery_status": int(status),
            "expected_parcel_status": int(parcel_status),
        }
        claimed = delivery.rider_id is not None
        delivery_unchanged = select(Delivery.delivery_id).where(
            Delivery.delivery_id == delivery.delivery_id,
            Delivery.status == int(status),
            Delivery.rider_id.is_not(None) if claimed else Delivery.rider_id.is_(None),
        ).exists()
        criteria = [Parcel.parcel_id == delivery.parcel_id, delivery_unchanged]
        if forward_only:
            criteria.append(Parcel.status <= int(parcel_status))
        
        try:
            affected = await self.store.conditional_update(Parcel, {"status": int(parcel_status)}, *criteria)
        except StoreUnavailableError as e:
            self._abandon_upload(upload, delivery.delivery_id)
            logger.error("Parcel mirror write failed: %s", details)
            raise PartialSyncError(
                f"Delivery updated but parcel status could not be synced: {e.message}",
                details=details,
            ) from e
        if affected == 0 and not await self._mirror_superseded(delivery, status, parcel_status, forward_only):
            self._abandon_upload(upload, delivery.delivery_id)
            logger.error("Parcel mirror write matched no row: %s", details)
            raise PartialSyncError("Delivery updated but its parcel row could not be synced", details=details)
    
    async def _mirror_superseded(
        self,
        delivery: Delivery,
        status: DeliveryStatus,
        parcel_status: ParcelStatus,
        forward_only: bool,
    ) -> bool:
        """True when a newer change already owns the parcel mirror."""
        parcel = await self.store.first(Parcel, Parcel.parcel_id == delivery.parcel_id)
        if parcel is None:
            return False
        current = await self.store.first(Delivery, Delivery.delivery_id == delivery.delivery_id)
        if current is not None and current.status == int(status) and not (
            forward_only and parcel.status > int(parcel_status)
        ):
            return False
        logger.info(
            "Parcel %s mirror for delivery %s superseded (parcel now %s)",
            delivery.parcel_id, delivery.delivery_id, parcel.status
        )
        return True
    
    def _start_upload(
        self, delivery_id: int, status: DeliveryStatus, proof_image: Optional[str]
    ) -> Optional[asyncio.Task]:
        if not proof_image or self.image_store is None or status not in PROOF_IMAGE_FIELDS:
            return None
        return asyncio.create_task(
            self.image_store.upload(proof_image, "delivery-status"),
            name=f"proof-image-{delivery_id}",
        )
    
    def _abandon_upload(self, upload: Optional[asyncio.Task], delivery_id: int) -> None:
        if upload is None:
            return
        if upload.done():
            if not upload.cancelled():
                upload.exception()  # mark retrieved
            return
        upload.cancel()
        logger.warning("Proof image upload for delivery %s abandoned", delivery_id)
    
    async def _attach_proof_image(
        self, delivery_id: int, status: DeliveryStatus, upload: Optional[asyncio.Task]
    ) -> None:
        """Wait briefly for the upload and record its URL; never raises."""
        if upload is None:
            return
        try:
            url = await asyncio.wait_for(asyncio.shield(upload), timeout=self.image_timeout)
        except asyncio.TimeoutError:
            if self.late_store is None:
                upload.cancel()
                logger.warning("Proof image upload for delivery %s timed out", delivery_id)
                return
            logger.info("Proof image upload for delivery %s still running; URL will be saved when it finishes", delivery_id)
            upload.add_done_callback(lambda task: self._schedule_late_write(delivery_id, status, task))
            _track(upload)
            return
        except Exception as e:
            logger.warning("Proof image upload for delivery %s failed: %s", delivery_id, e)
            return
        await self._save_proof_url(self.store, delivery_id, status, url)
    
    def _schedule_late_write(self, delivery_id: int, status: DeliveryStatus, upload: asyncio.Task) -> None:
        if upload.cancelled():
            return
        error = upload.exception()
        if error is not None:
            logger.warning("Proof image upload for delivery %s failed: %s", delivery_id, error)
            return
        _track(asyncio.ensure_future(self._write_late(delivery_id, status, upload.result())))
    
    async def _write_late(self, delivery_id: int, status: DeliveryStatus, url: Optional[str]) -> None:
        try:
            async with self.late_store() as store:
                await self._save_proof_url(store, delivery_id, status, url)
        except Exception as e:
            logger.warning("Could not open store for late proof image of delivery %s: %s", delivery_id, e)
    
    async def _save_proof_url(
        self, store: SqlStore, delivery_id: int, status: DeliveryStatus, url: Optional[str]
    ) -> None:
        if not url:
            logger.warning("Proof image upload for delivery %s returned no URL", delivery_id)
            return
        try:
            await store.conditional_update(
                Delivery,
                {PROOF_IMAGE_FIELDS[status]: url},
                Delivery.delivery_id == delivery_id,
            )
        except Exception as e:
            logger.warning("Could not save proof image URL for delivery %s: %s", delivery_id, e)
    
    async def _result(
        self,
        delivery_id: int,
        old_status: DeliveryStatus,
        status: DeliveryStatus,
        parcel_status: ParcelStatus,
    ) -> TransitionResult:
        delivery = await self._load_delivery(delivery_id)
        parcel = await self.store.first(Parcel, Parcel.parcel_id == delivery.parcel_id)
        return TransitionResult(
            delivery=delivery,
            parcel=parcel,
            old_status=old_status,
            new_status=status,
            parcel_status=ParcelStatus(parcel.status) if parcel is not None else parcel_status,
            status_label=delivery_label(status),
        )
