"""
Read Projection Tests.

Validates the rider job board, rider job lists, user parcel lists and the
projection cache in front of them.
"""

import pytest

from lastmile.app.models.parcel import Parcel
from lastmile.app.models.parcel_enums import DeliveryStatus, ParcelStatus
from lastmile.app.services.assignment import AssignmentCoordinator
from lastmile.app.services.projections import MISSING_ADDRESS_TEXT, ProjectionBuilder, most_recent

from lastmile.tests.fakes import ago


@pytest.mark.asyncio
async def test_available_parcels_carry_captured_route(projections, store, seed):
    await seed.rider(rider_id=42)
    waiting, waiting_delivery = await seed.job()
    taken, _ = await seed.job()
    await AssignmentCoordinator(store).claim(taken.parcel_id, 42)
    
    views = await projections.available_parcels()
    
    assert [v["parcel_id"] for v in views] == [waiting.parcel_id]
    view = views[0]
    assert view["status"] == ParcelStatus.WAITING_FOR_RIDER
    assert view["status_label"] == "waitingForRider"
    assert view["sender"]["pickup_coordinates"] == {
        "latitude": waiting_delivery.pickup_latitude,
        "longitude": waiting_delivery.pickup_longitude,
        "address_text": "Pickup Street 1",
    }
    assert view["receiver"]["delivery_coordinates"]["address_text"] == "Dropoff Avenue 9"
    assert view["sender"]["delivery_coordinates"] is None
    assert view["sender"]["addresses"] is None


@pytest.mark.asyncio
async def test_missing_address_text_gets_placeholder(projections, seed):
    sender = await seed.user()
    receiver = await seed.user()
    parcel = await seed.parcel(sender, receiver)
    await seed.delivery(parcel, pickup_address=None, delivery_address="")
    
    (view,) = await projections.available_parcels()
    
    assert view["sender"]["pickup_coordinates"]["address_text"] == MISSING_ADDRESS_TEXT
    assert view["receiver"]["delivery_coordinates"]["address_text"] == MISSING_ADDRESS_TEXT


@pytest.mark.asyncio
async def test_most_recent_delivery_wins(projections, seed):
    sender = await seed.user()
    receiver = await seed.user()
    parcel = await seed.parcel(sender, receiver)
    await seed.delivery(
        parcel, status=DeliveryStatus.DELIVERED, pickup_address="Old Pickup", created_at=ago(60)
    )
    newest = await seed.delivery(parcel, pickup_address="New Pickup", created_at=ago(1))
    
    (view,) = await projections.available_parcels()
    assert view["sender"]["pickup_coordinates"]["address_text"] == "New Pickup"
    
    (user_view,) = await projections.user_parcels(sender.user_id)
    assert user_view["delivery_id"] == newest.delivery_id
    assert user_view["delivery_status"] == DeliveryStatus.PENDING


def test_most_recent_breaks_ties_by_id():
    class Row:
        def __init__(self, delivery_id, created_at):
            self.delivery_id = delivery_id
            self.created_at = created_at
    
    rows = [Row(3, ago(5)), Row(9, ago(5)), Row(4, ago(10))]
    
    assert most_recent(rows).delivery_id == 9
    assert most_recent([]) is None


@pytest.mark.asyncio
async def test_rider_jobs_split_active_and_history(projections, seed):
    await seed.rider(rider_id=42)
    sender = await seed.user()
    receiver = await seed.user()
    done = await seed.parcel(sender, receiver, status=ParcelStatus.DELIVERED)
    done_delivery = await seed.delivery(done, rider_id=42, status=DeliveryStatus.DELIVERED)
    open_parcel = await seed.parcel(sender, receiver, status=ParcelStatus.RIDER_ACCEPTED)
    open_delivery = await seed.delivery(open_parcel, rider_id=42)
    
    active = await projections.rider_jobs(42, "active")
    history = await projections.rider_jobs(42, "history")
    current = await projections.rider_current_job(42)
    
    assert [j["delivery_id"] for j in active] == [open_delivery.delivery_id]
    assert [j["delivery_id"] for j in history] == [done_delivery.delivery_id]
    assert active[0]["status_label"] == "pending"
    assert active[0]["parcel"]["status_label"] == "riderAccepted"
    assert active[0]["parcel"]["sender"]["pickup_coordinates"]["address_text"] == "Pickup Street 1"
    assert current["delivery_id"] == open_delivery.delivery_id
    
    assert await projections.rider_jobs(7, "active") == []
    assert await projections.rider_current_job(7) is None


@pytest.mark.asyncio
async def test_user_parcels_list_both_roles_with_addresses(projections, seed):
    alice = await seed.user("alice")
    bob = await seed.user("bob")
    await seed.address(alice, "Alice Home", created_at=ago(30))
    await seed.address(alice, "Alice Office", created_at=ago(5))
    await seed.address(bob, "Bob Home", created_at=ago(20))
    sent = await seed.parcel(alice, bob)
    received = await seed.parcel(bob, alice)
    
    views = await projections.user_parcels(alice.user_id)
    
    assert sorted(v["parcel_id"] for v in views) == sorted([sent.parcel_id, received.parcel_id])
    sent_view = next(v for v in views if v["parcel_id"] == sent.parcel_id)
    assert [a["address_text"] for a in sent_view["sender"]["addresses"]] == ["Alice Office", "Alice Home"]
    assert [a["address_text"] for a in sent_view["receiver"]["addresses"]] == ["Bob Home"]
    assert sent_view["delivery_id"] is None
    assert await projections.user_parcels(bob.user_id) != []


@pytest.mark.asyncio
async def test_all_parcels_filter_by_status(projections, seed):
    sender = await seed.user()
    receiver = await seed.user()
    waiting = await seed.parcel(sender, receiver)
    delivered = await seed.parcel(sender, receiver, status=ParcelStatus.DELIVERED)
    
    everything = await projections.all_parcels()
    only_delivered = await projections.all_parcels(ParcelStatus.DELIVERED)
    
    assert {p["parcel_id"] for p in everything} == {waiting.parcel_id, delivered.parcel_id}
    assert [p["parcel_id"] for p in only_delivered] == [delivered.parcel_id]


@pytest.mark.asyncio
async def test_cached_until_invalidated(projections, seed):
    await seed.job()
    first = await projections.available_parcels()
    
    await seed.job()
    assert await projections.available_parcels() == first
    
    await projections.invalidate()
    assert len(await projections.available_parcels()) == 2


@pytest.mark.asyncio
async def test_claim_invalidates_the_board(projections, store, seed):
    await seed.rider(rider_id=42)
    parcel, _ = await seed.job()
    assert len(await projections.available_parcels()) == 1
    
    await AssignmentCoordinator(store, on_change=projections.invalidate).claim(parcel.parcel_id, 42)
    
    assert await projections.available_parcels() == []


@pytest.mark.asyncio
async def test_claim_during_build_does_not_republish_stale_board(projections, store, seed, monkeypatch):
    """The board built before a claim must not be served after it."""
    await seed.rider(rider_id=42)
    parcel, _ = await seed.job()
    read_parcels = store.get
    claimed = []
    
    async def get_then_claim(model, *criteria, **kwargs):
        rows = await read_parcels(model, *criteria, **kwargs)
        if model is Parcel and not claimed:
            claimed.append(parcel.parcel_id)
            coordinator = AssignmentCoordinator(store, on_change=projections.invalidate)
            await coordinator.claim(parcel.parcel_id, 42)
        return rows
    
    monkeypatch.setattr(store, "get", get_then_claim)
    
    in_flight = await projections.available_parcels()
    
    assert [v["parcel_id"] for v in in_flight] == claimed
    assert await projections.available_parcels() == []


@pytest.mark.asyncio
async def test_redis_outage_falls_through_to_store(projections, redis_client, seed):
    await seed.job()
    redis_client.down = True
    
    assert len(await projections.available_parcels()) == 1
    await projections.invalidate()


@pytest.mark.asyncio
async def test_builder_without_cache(store, seed):
    await seed.job()
    
    assert len(await ProjectionBuilder(store).available_parcels()) == 1
