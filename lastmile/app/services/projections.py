"""
Read projection builder.

Assembles the denormalized views served to riders and users by joining
parcels, deliveries, users and addresses, and owns the short-lived cache
for them. Mutating services never touch the cache directly; they call
invalidate() after a successful write.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from lastmile.app.models.delivery import Delivery
from lastmile.app.models.parcel import Parcel
from lastmile.app.models.parcel_enums import (
    DeliveryStatus,
    ParcelStatus,
    UNFINISHED_DELIVERY_STATUSES,
)
from lastmile.app.models.user import User, UserAddress
from lastmile.app.schemas.delivery import RiderJobView
from lastmile.app.schemas.parcel import (
    AddressView,
    ContactView,
    Coordinates,
    ParcelView,
    UserParcelView,
)
from lastmile.app.schemas.user import UserResponse
from lastmile.app.services.cache import ProjectionCache
from lastmile.app.services.status_mapper import delivery_label, parcel_label
from lastmile.app.services.store import SqlStore

logger = logging.getLogger("lastmile.projections")

MISSING_ADDRESS_TEXT = "No address information"

JOB_GROUPS = {
    "active": tuple(int(s) for s in UNFINISHED_DELIVERY_STATUSES),
    "history": (int(DeliveryStatus.DELIVERED),),
}


def most_recent(deliveries: Iterable[Delivery]) -> Optional[Delivery]:
    """Latest delivery row; ties on created_at go to the higher id."""
    return max(deliveries, key=lambda d: (d.created_at, d.delivery_id), default=None)


def _coordinates(latitude, longitude, address_text) -> Coordinates:
    return Coordinates(
        latitude=latitude,
        longitude=longitude,
        address_text=address_text or MISSING_ADDRESS_TEXT,
    )


class ProjectionBuilder:
    
    def __init__(self, store: SqlStore, cache: Optional[ProjectionCache] = None):
        self.store = store
        self.cache = cache
    
    async def invalidate(self) -> None:
        """Hook for mutating services: drop every cached projection."""
        if self.cache is not None:
            await self.cache.invalidate_all()
    
    async def _cached(self, key: str, build) -> Any:
        if self.cache is None:
            return await build()
        # Read once so a write landing during build() orphans this entry
        generation = await self.cache.generation()
        if generation is None:
            return await build()
        hit = await self.cache.get(key, generation=generation)
        if hit is not None:
            return hit
        value = await build()
        await self.cache.set(key, value, generation=generation)
        return value
    
    # Joins
    
    async def _contacts(self, user_ids: Iterable[int], with_addresses: bool) -> Dict[int, ContactView]:
        ids = sorted(set(user_ids))
        if not ids:
            return {}
        users = await self.store.get(User, User.user_id.in_(ids))
        addresses: Dict[int, List[AddressView]] = {}
        if with_addresses:
            rows = await self.store.get(
                UserAddress,
                UserAddress.user_id.in_(ids),
                order_by=(UserAddress.created_at.desc(), UserAddress.address_id.desc()),
            )
            for row in rows:
                addresses.setdefault(row.user_id, []).append(AddressView.model_validate(row))
        return {
            user.user_id: ContactView(
                user_id=user.user_id,
                username=user.username,
                phone=user.phone,
                profile_image=user.profile_image,
                addresses=addresses.get(user.user_id, []) if with_addresses else None,
            )
            for user in users
        }
    
    async def _deliveries_by_parcel(self, parcel_ids: List[int]) -> Dict[int, List[Delivery]]:
        grouped: Dict[int, List[Delivery]] = {}
        if not parcel_ids:
            return grouped
        for delivery in await self.store.get(Delivery, Delivery.parcel_id.in_(parcel_ids)):
            grouped.setdefault(delivery.parcel_id, []).append(delivery)
        return grouped
    
    def _parcel_view(self, parcel: Parcel, contacts: Dict[int, ContactView], view_cls=ParcelView, **extra):
        sender = contacts.get(parcel.sender_id)
        receiver = contacts.get(parcel.receiver_id)
        return view_cls(
            parcel_id=parcel.parcel_id,
            sender_id=parcel.sender_id,
            receiver_id=parcel.receiver_id,
            description=parcel.description,
            item_image=parcel.item_image,
            status=parcel.status,
            status_label=parcel_label(parcel.status),
            created_at=parcel.created_at,
            updated_at=parcel.updated_at,
            # copies: one user can be sender on one parcel and receiver on another
            sender=sender.model_copy(deep=True) if sender else None,
            receiver=receiver.model_copy(deep=True) if receiver else None,
            **extra,
        )
    
    @staticmethod
    def _attach_coordinates(view: ParcelView, delivery: Optional[Delivery]) -> None:
        if delivery is None:
            return
        if view.sender is not None:
            view.sender.pickup_coordinates = _coordinates(
                delivery.pickup_latitude, delivery.pickup_longitude, delivery.pickup_address
            )
        if view.receiver is not None:
            view.receiver.delivery_coordinates = _coordinates(
                delivery.delivery_latitude, delivery.delivery_longitude, delivery.delivery_address
            )
    
    # Projections
    
    async def available_parcels(self) -> List[Dict[str, Any]]:
        """Parcels waiting for a rider, with the captured pickup/drop-off points."""
        
        async def build():
            parcels = await self.store.get(
                Parcel,
                Parcel.status == int(ParcelStatus.WAITING_FOR_RIDER),
                order_by=(Parcel.created_at.desc(), Parcel.parcel_id.desc()),
            )
            deliveries = await self._deliveries_by_parcel([p.parcel_id for p in parcels])
            contacts = await self._contacts(
                [uid for p in parcels for uid in (p.sender_id, p.receiver_id)], with_addresses=False
            )
            views = []
            for parcel in parcels:
                view = self._parcel_view(parcel, contacts)
                self._attach_coordinates(view, most_recent(deliveries.get(parcel.parcel_id, [])))
                views.append(view.model_dump(mode="json"))
            logger.debug("Built %d available parcels", len(views))
            return views
        
        return await self._cached("available_parcels", build)
    
    async def all_parcels(self, status: Optional[int] = None) -> List[Dict[str, Any]]:
        """Every parcel (optionally one status) with contacts and addresses."""
        
        async def build():
            criteria = [] if status is None else [Parcel.status == int(status)]
            parcels = await self.store.get(
                Parcel, *criteria, order_by=(Parcel.created_at.desc(), Parcel.parcel_id.desc())
            )
            contacts = await self._contacts(
                [uid for p in parcels for uid in (p.sender_id, p.receiver_id)], with_addresses=True
            )
            return [self._parcel_view(p, contacts).model_dump(mode="json") for p in parcels]
        
        key = "parcels:all" if status is None else f"parcels:status:{int(status)}"
        return await self._cached(key, build)
    
    async def rider_jobs(self, rider_id: int, group: str = "active") -> List[Dict[str, Any]]:
        """
        A rider's deliveries in one status group, newest first.
        
        group is "active" (PENDING/IN_TRANSIT) or "history" (DELIVERED).
        """
        statuses = JOB_GROUPS[group]
        
        async def build():
            deliveries = await self.store.get(
                Delivery,
                Delivery.rider_id == rider_id,
                Delivery.status.in_(statuses),
                order_by=(Delivery.created_at.desc(), Delivery.delivery_id.desc()),
            )
            parcel_ids = sorted({d.parcel_id for d in deliveries})
            parcels = {
                p.parcel_id: p
                for p in (await self.store.get(Parcel, Parcel.parcel_id.in_(parcel_ids)) if parcel_ids else [])
            }
            contacts = await self._contacts(
                [uid for p in parcels.values() for uid in (p.sender_id, p.receiver_id)], with_addresses=False
            )
            jobs = []
            for delivery in deliveries:
                parcel = parcels.get(delivery.parcel_id)
                if parcel is None:
                    continue
                parcel_view = self._parcel_view(parcel, contacts)
                self._attach_coordinates(parcel_view, delivery)
                jobs.append(RiderJobView(
                    delivery_id=delivery.delivery_id,
                    parcel_id=delivery.parcel_id,
                    rider_id=delivery.rider_id,
                    status=delivery.status,
                    status_label=delivery_label(delivery.status),
                    pickup_image=delivery.pickup_image,
                    delivery_image=delivery.delivery_image,
                    created_at=delivery.created_at,
                    updated_at=delivery.updated_at,
                    parcel=parcel_view,
                ).model_dump(mode="json"))
            return jobs
        
        return await self._cached(f"rider:{rider_id}:jobs:{group}", build)
    
    async def rider_current_job(self, rider_id: int) -> Optional[Dict[str, Any]]:
        jobs = await self.rider_jobs(rider_id, "active")
        return jobs[0] if jobs else None
    
    async def users(self) -> List[Dict[str, Any]]:
        """All user accounts by username."""
        
        async def build():
            users = await self.store.get(User, order_by=(User.username.asc(), User.user_id.asc()))
            return [UserResponse.model_validate(u).model_dump(mode="json") for u in users]
        
        return await self._cached("users:all", build)
    
    async def user_parcels(self, user_id: int) -> List[Dict[str, Any]]:
        """
        Parcels the user sends or receives, each with its most recent
        delivery and both parties' addresses newest first.
        """
        
        async def build():
            parcels = await self.store.get(
                Parcel,
                (Parcel.sender_id == user_id) | (Parcel.receiver_id == user_id),
                order_by=(Parcel.created_at.desc(), Parcel.parcel_id.desc()),
            )
            deliveries = await self._deliveries_by_parcel([p.parcel_id for p in parcels])
            contacts = await self._contacts(
                [uid for p in parcels for uid in (p.sender_id, p.receiver_id)], with_addresses=True
            )
            views = []
            for parcel in parcels:
                latest = most_recent(deliveries.get(parcel.parcel_id, []))
                extra = {}
                if latest is not None:
                    extra = {
                        "delivery_id": latest.delivery_id,
                        "rider_id": latest.rider_id,
                        "delivery_status": latest.status,
                        "delivery_created_at": latest.created_at,
                        "delivery_updated_at": latest.updated_at,
                    }
                views.append(
                    self._parcel_view(parcel, contacts, view_cls=UserParcelView, **extra).model_dump(mode="json")
                )
            return views
        
        return await self._cached(f"user:{user_id}:parcels", build)
