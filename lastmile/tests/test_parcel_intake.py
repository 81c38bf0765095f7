"""
Parcel Intake and Address Book Tests.
"""

import httpx
import pytest
from unittest.mock import AsyncMock

from lastmile.app.core.exceptions import ForbiddenError, NotFoundError, ValidationError
from lastmile.app.models.delivery import Delivery
from lastmile.app.models.parcel import Parcel
from lastmile.app.models.parcel_enums import DeliveryStatus, ParcelStatus
from lastmile.app.schemas.parcel import ParcelCreate
from lastmile.app.schemas.user import AddressCreate
from lastmile.app.services import address_book
from lastmile.app.services.image_store import HttpImageStore, ImageUploadError, decode_base64_image
from lastmile.app.services.parcel_intake import DEFAULT_DESCRIPTION, compose_description, create_parcel

from lastmile.tests.fakes import ago


@pytest.fixture
async def parties(seed):
    sender = await seed.user("sender")
    receiver = await seed.user("receiver")
    pickup = await seed.address(sender, "12 Soi Sukhumvit", lat=13.73, lng=100.56)
    dropoff = await seed.address(
        receiver, "99 Silom", lat=13.72, lng=100.52, formatted_address="99 Silom Rd, Bangkok 10500"
    )
    return sender, receiver, pickup, dropoff


def _request(sender, receiver, pickup, dropoff, **fields):
    return ParcelCreate(
        sender_id=sender.user_id,
        receiver_id=receiver.user_id,
        sender_address_id=pickup.address_id,
        receiver_address_id=dropoff.address_id,
        **fields
    )


@pytest.mark.asyncio
async def test_create_parcel_with_unclaimed_delivery(store, parties):
    sender, receiver, pickup, dropoff = parties
    on_change = AsyncMock()
    
    parcel, delivery = await create_parcel(
        store, _request(*parties, item_name="Shoes", item_description="Size 42"), on_change=on_change
    )
    
    assert parcel.status == ParcelStatus.WAITING_FOR_RIDER
    assert parcel.description == "Shoes - Size 42"
    assert delivery.parcel_id == parcel.parcel_id
    assert delivery.rider_id is None
    assert delivery.status == DeliveryStatus.PENDING
    assert (delivery.pickup_latitude, delivery.pickup_longitude) == (13.73, 100.56)
    assert delivery.pickup_address == "12 Soi Sukhumvit"
    assert delivery.delivery_address == "99 Silom Rd, Bangkok 10500"
    on_change.assert_awaited_once()


@pytest.mark.asyncio
async def test_sender_cannot_send_to_self(store, parties):
    sender, _, pickup, _ = parties
    
    with pytest.raises(ValidationError):
        await create_parcel(store, _request(sender, sender, pickup, pickup))


@pytest.mark.asyncio
async def test_address_must_belong_to_its_user(store, parties):
    sender, receiver, pickup, dropoff = parties
    
    with pytest.raises(NotFoundError):
        await create_parcel(store, _request(sender, receiver, dropoff, dropoff))
    assert await store.count(Parcel) == 0


@pytest.mark.asyncio
async def test_failed_delivery_insert_removes_parcel(store, parties, monkeypatch):
    original = store.insert
    
    async def delivery_insert_fails(*rows):
        if isinstance(rows[0], Delivery):
            raise RuntimeError("insert rejected")
        return await original(*rows)
    
    monkeypatch.setattr(store, "insert", delivery_insert_fails)
    
    with pytest.raises(RuntimeError):
        await create_parcel(store, _request(*parties))
    
    assert await store.count(Parcel) == 0
    assert await store.count(Delivery) == 0


@pytest.mark.parametrize("description, name, detail, expected", [
    ("Fragile glass", "Vase", "Blue", "Fragile glass"),
    (None, "Vase", "Blue", "Vase - Blue"),
    (None, "Vase", None, "Vase"),
    (None, None, "Blue", DEFAULT_DESCRIPTION),
    ("", None, None, DEFAULT_DESCRIPTION),
])
def test_compose_description(description, name, detail, expected):
    assert compose_description(description, name, detail) == expected


@pytest.mark.asyncio
async def test_address_book_order_and_primary_protection(store, seed):
    user = await seed.user()
    primary = await seed.address(user, "First Home", created_at=ago(60))
    other = await seed.address(user, "Second Home", created_at=ago(30))
    added = await address_book.add_address(store, user.user_id, AddressCreate(address_text="Third Home"))
    
    listed = await address_book.list_addresses(store, user.user_id)
    assert [a.address_id for a in listed] == [added.address_id, other.address_id, primary.address_id]
    
    with pytest.raises(ForbiddenError):
        await address_book.delete_address(store, user.user_id, primary.address_id)
    
    deleted = await address_book.delete_address(store, user.user_id, other.address_id)
    assert deleted.address_text == "Second Home"
    
    with pytest.raises(NotFoundError):
        await address_book.delete_address(store, user.user_id, other.address_id)
    assert len(await address_book.list_addresses(store, user.user_id)) == 2


@pytest.mark.asyncio
async def test_address_for_unknown_user(store):
    with pytest.raises(NotFoundError):
        await address_book.add_address(store, 777, AddressCreate(address_text="Nowhere"))


def test_decode_accepts_data_urls():
    assert decode_base64_image("data:image/jpeg;base64,aGVsbG8=") == b"hello"
    assert decode_base64_image("aGVsbG8=") == b"hello"
    with pytest.raises(ImageUploadError):
        decode_base64_image("not base64!!")


@pytest.mark.asyncio
async def test_http_image_store_upload():
    seen = []
    
    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"Key": "ok"})
    
    images = HttpImageStore(
        base_url="https://storage.test/", api_key="secret", bucket="images",
        transport=httpx.MockTransport(handler),
    )
    
    url = await images.upload("aGVsbG8=", "delivery-status")
    
    assert url.startswith("https://storage.test/storage/v1/object/public/images/delivery-status/")
    assert url.endswith(".jpg")
    assert seen[0].headers["Authorization"] == "Bearer secret"
    assert seen[0].content == b"hello"
    assert await images.upload("", "delivery-status") is None


@pytest.mark.asyncio
async def test_http_image_store_errors():
    failing = HttpImageStore(
        base_url="https://storage.test", bucket="images",
        transport=httpx.MockTransport(lambda request: httpx.Response(500)),
    )
    with pytest.raises(ImageUploadError):
        await failing.upload("aGVsbG8=", "delivery-status")
    
    with pytest.raises(ImageUploadError):
        await HttpImageStore(base_url="").upload("aGVsbG8=", "delivery-status")


@pytest.mark.asyncio
async def test_demo_seed_is_idempotent(db_session, store):
    from lastmile.app.models.rider import Rider
    from lastmile.app.models.user import User, UserAddress
    from lastmile.seed_data import seed_demo_data
    
    assert await seed_demo_data(db_session) is True
    assert await seed_demo_data(db_session) is False
    
    assert await store.count(User) == 2
    assert await store.count(UserAddress) == 2
    assert await store.count(Rider) == 2
