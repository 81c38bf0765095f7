"""
End-to-end API Tests.

Drives a parcel from intake to delivery over HTTP and checks the error
envelope for the expected failure cases.
"""

import pytest

PHOTO = "data:image/jpeg;base64,/9j/4AAQSkZJRg=="


@pytest.fixture
async def world(client, seed):
    """Sender and receiver with one address each, and riders 42 and 7."""
    sender = await seed.user("sender")
    receiver = await seed.user("receiver")
    await seed.rider(rider_id=42)
    await seed.rider(rider_id=7)
    
    pickup = await client.post(f"/v1/users/{sender.user_id}/addresses", json={
        "address_text": "12 Soi Sukhumvit", "latitude": 13.73, "longitude": 100.56,
    })
    dropoff = await client.post(f"/v1/users/{receiver.user_id}/addresses", json={
        "address_text": "99 Silom", "latitude": 13.72, "longitude": 100.52,
    })
    assert pickup.status_code == 201
    assert dropoff.status_code == 201
    return {
        "sender": sender.user_id,
        "receiver": receiver.user_id,
        "pickup": pickup.json()["address_id"],
        "dropoff": dropoff.json()["address_id"],
    }


async def _create_parcel(client, world, **fields):
    response = await client.post("/v1/parcels", json={
        "sender_id": world["sender"],
        "receiver_id": world["receiver"],
        "sender_address_id": world["pickup"],
        "receiver_address_id": world["dropoff"],
        **fields,
    })
    assert response.status_code == 201
    body = response.json()
    return body["parcel"]["parcel_id"], body["delivery"]["delivery_id"]


@pytest.mark.asyncio
async def test_parcel_lifecycle(client, world, image_store):
    parcel_id, delivery_id = await _create_parcel(client, world, item_name="Books")
    
    board = (await client.get("/v1/deliveries/available")).json()
    assert [p["parcel_id"] for p in board] == [parcel_id]
    assert board[0]["sender"]["pickup_coordinates"]["address_text"] == "12 Soi Sukhumvit"
    
    accepted = await client.post(f"/v1/parcels/{parcel_id}/accept", json={"rider_id": 42})
    assert accepted.status_code == 201
    assert accepted.json()["delivery"]["rider_id"] == 42
    assert accepted.json()["parcel_status"] == 2
    
    lost = await client.post(f"/v1/parcels/{parcel_id}/accept", json={"rider_id": 7})
    assert lost.status_code == 409
    assert lost.json()["error_code"] == "ERR_PARCEL_NOT_CLAIMABLE"
    
    assert (await client.get("/v1/deliveries/available")).json() == []
    
    picked_up = await client.patch(f"/v1/deliveries/{delivery_id}/status", json={"status": "1", "image": PHOTO})
    assert picked_up.status_code == 200
    body = picked_up.json()
    assert body["old_status"] == 0
    assert body["new_status"] == 1
    assert body["status_description"] == "in_transit"
    assert body["parcel_status"] == 3
    assert body["parcel"]["status"] == 3
    assert body["delivery"]["pickup_image"].startswith("https://images.test/")
    assert len(image_store.uploads) == 1
    
    current = (await client.get("/v1/riders/42/current-job")).json()
    assert current["has_active_job"] is True
    assert current["current_job"]["delivery_id"] == delivery_id
    
    delivered = await client.patch(f"/v1/deliveries/{delivery_id}/status", json={"status": 2})
    assert delivered.json()["parcel_status"] == 4
    
    assert (await client.get("/v1/riders/42/deliveries")).json() == []
    history = (await client.get("/v1/riders/42/history")).json()
    assert [j["delivery_id"] for j in history] == [delivery_id]
    assert (await client.get("/v1/riders/42/current-job")).json()["has_active_job"] is False
    
    mine = (await client.get(f"/v1/users/{world['sender']}/parcels")).json()
    assert mine[0]["rider_id"] == 42
    assert mine[0]["delivery_status"] == 2
    
    only_delivered = (await client.get("/v1/parcels", params={"status": "delivered"})).json()
    assert [p["parcel_id"] for p in only_delivered] == [parcel_id]


@pytest.mark.asyncio
async def test_busy_rider_gets_conflict(client, world):
    first, _ = await _create_parcel(client, world)
    second, _ = await _create_parcel(client, world)
    
    await client.post(f"/v1/parcels/{first}/accept", json={"rider_id": 42})
    response = await client.post(f"/v1/parcels/{second}/accept", json={"rider_id": 42})
    
    assert response.status_code == 409
    assert response.json()["error_code"] == "ERR_RIDER_BUSY"
    assert response.json()["details"]["existing_jobs"] == 1


@pytest.mark.asyncio
async def test_unknown_rider_cannot_accept(client, world):
    parcel_id, _ = await _create_parcel(client, world)
    
    response = await client.post(f"/v1/parcels/{parcel_id}/accept", json={"rider_id": 999})
    
    assert response.status_code == 404
    assert response.json()["error_code"] == "ERR_NOT_FOUND"


@pytest.mark.asyncio
async def test_status_errors(client, world):
    parcel_id, delivery_id = await _create_parcel(client, world)
    await client.post(f"/v1/parcels/{parcel_id}/accept", json={"rider_id": 42})
    
    unknown = await client.patch(f"/v1/deliveries/{delivery_id}/status", json={"status": "shipped"})
    assert unknown.status_code == 400
    assert unknown.json()["error_code"] == "ERR_UNKNOWN_STATUS"
    
    skipped = await client.patch(f"/v1/deliveries/{delivery_id}/status", json={"status": 2})
    assert skipped.status_code == 400
    assert skipped.json()["error_code"] == "ERR_INVALID_TRANSITION"
    
    missing = await client.patch("/v1/deliveries/424242/status", json={"status": 1})
    assert missing.status_code == 404
    
    bad_filter = await client.get("/v1/parcels", params={"status": "9"})
    assert bad_filter.status_code == 400


@pytest.mark.asyncio
async def test_reconcile_endpoint(client, world):
    parcel_id, delivery_id = await _create_parcel(client, world)
    await client.post(f"/v1/parcels/{parcel_id}/accept", json={"rider_id": 42})
    
    response = await client.post(f"/v1/deliveries/{delivery_id}/reconcile")
    
    assert response.status_code == 200
    assert response.json()["parcel_status"] == 2


@pytest.mark.asyncio
async def test_primary_address_is_protected(client, world):
    user_id = world["sender"]
    extra = await client.post(f"/v1/users/{user_id}/addresses", json={"address_text": "Second Home"})
    
    forbidden = await client.delete(f"/v1/users/{user_id}/addresses/{world['pickup']}")
    assert forbidden.status_code == 403
    assert forbidden.json()["error_code"] == "ERR_FORBIDDEN"
    
    deleted = await client.delete(f"/v1/users/{user_id}/addresses/{extra.json()['address_id']}")
    assert deleted.status_code == 200
    assert deleted.json()["deleted_address"]["address_text"] == "Second Home"
    
    listed = (await client.get(f"/v1/users/{user_id}/addresses")).json()
    assert [a["address_id"] for a in listed["addresses"]] == [world["pickup"]]


@pytest.mark.asyncio
async def test_invalid_parcel_request(client, world):
    same_party = await client.post("/v1/parcels", json={
        "sender_id": world["sender"],
        "receiver_id": world["sender"],
        "sender_address_id": world["pickup"],
        "receiver_address_id": world["pickup"],
    })
    assert same_party.status_code == 400
    
    malformed = await client.post("/v1/parcels", json={"sender_id": "abc"})
    assert malformed.status_code == 422
    assert malformed.json()["error_code"] == "ERR_VALIDATION"


@pytest.mark.asyncio
async def test_health_and_correlation_id(client):
    response = await client.get("/health", headers={"X-Correlation-ID": "abc-123"})
    
    assert response.status_code == 200
    assert response.json()["database"] == "connected"
    assert response.json()["cache"] == "connected"
    assert response.headers["X-Correlation-ID"] == "abc-123"


@pytest.mark.asyncio
async def test_health_reports_cache_outage(client, redis_client):
    redis_client.down = True
    
    response = await client.get("/health")
    
    assert response.status_code == 200
    assert response.json()["cache"] == "unavailable"


@pytest.mark.asyncio
async def test_status_change_before_accept_is_rejected(client, world):
    parcel_id, delivery_id = await _create_parcel(client, world)
    
    response = await client.patch(f"/v1/deliveries/{delivery_id}/status", json={"status": 0})
    
    assert response.status_code == 400
    assert response.json()["error_code"] == "ERR_DELIVERY_NOT_CLAIMED"
    board = (await client.get("/v1/deliveries/available")).json()
    assert [p["parcel_id"] for p in board] == [parcel_id]
    accepted = await client.post(f"/v1/parcels/{parcel_id}/accept", json={"rider_id": 42})
    assert accepted.status_code == 201


@pytest.mark.asyncio
async def test_rider_location_tracking(client, world):
    assert (await client.get("/v1/riders/42/location")).json() is None
    
    first = await client.post("/v1/riders/42/location", json={"latitude": 13.74, "longitude": 100.53})
    assert first.status_code == 200
    assert first.json()["location"]["rider"]["rider_id"] == 42
    
    await client.post("/v1/riders/7/location", json={"latitude": 13.70, "longitude": 100.50, "speed": 4.5})
    moved = await client.post("/v1/riders/42/location", json={
        "latitude": 13.75, "longitude": 100.54, "accuracy": 8, "heading": 90,
    })
    assert moved.json()["location"]["latitude"] == 13.75
    
    current = (await client.get("/v1/riders/42/location")).json()
    assert (current["latitude"], current["longitude"], current["heading"]) == (13.75, 100.54, 90)
    assert current["rider"]["name"]
    
    everyone = (await client.get("/v1/riders/locations/all")).json()
    assert sorted(loc["rider_id"] for loc in everyone) == [7, 42]
    
    selected = await client.post("/v1/riders/locations/multiple", json={"rider_ids": [7, 999]})
    assert [loc["rider_id"] for loc in selected.json()] == [7]


@pytest.mark.asyncio
async def test_rider_location_errors(client, world):
    unknown = await client.post("/v1/riders/999/location", json={"latitude": 13.7, "longitude": 100.5})
    assert unknown.status_code == 404
    
    off_map = await client.post("/v1/riders/42/location", json={"latitude": 123, "longitude": 100.5})
    assert off_map.status_code == 422
    
    no_ids = await client.post("/v1/riders/locations/multiple", json={})
    assert no_ids.status_code == 422


@pytest.mark.asyncio
async def test_list_users(client, world):
    response = await client.get("/v1/users")
    
    assert response.status_code == 200
    assert [u["username"] for u in response.json()] == ["receiver", "sender"]
