"""API tests: health, catalog, bookings lifecycle, allocation and reports over HTTP."""

import asyncio

import pytest

from staybook.core.auth import create_access_token

API = "/api/v1"


def stay(check_in: str, check_out: str, allocation: dict | None = None, **fields) -> dict:
    body = {
        "user_id": "guest-1",
        "target": {"kind": "property", "property_id": "prop-1", "room_type": "deluxe"},
        "check_in_date": check_in,
        "check_out_date": check_out,
        **fields,
    }
    if allocation is not None:
        body["allocation"] = allocation
    return body


ROOM_101 = {"resource_id": "room-101", "resource_type": "room"}


@pytest.fixture
async def room(client):
    resp = await client.post(
        f"{API}/resources",
        json={**ROOM_101, "name": "Ocean View", "category": "deluxe", "parent_ref": "prop-1", "capacity": 1},
    )
    assert resp.status_code == 201
    return resp.json()


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_register_and_list_catalog(client, room):
    assert room["capacity"] == 1
    assert room["is_active"] is True

    # Same key updates in place
    resp = await client.post(f"{API}/resources", json={**ROOM_101, "capacity": 2})
    assert resp.status_code == 201
    assert resp.json()["id"] == room["id"]

    resp = await client.get(f"{API}/resources", params={"resource_type": "room"})
    assert resp.status_code == 200
    assert [r["capacity"] for r in resp.json()] == [2]


@pytest.mark.asyncio
async def test_deactivated_resource_refuses_allocation(client, room):
    resp = await client.delete(f"{API}/resources/room/room-101")
    assert resp.status_code == 200
    assert resp.json()["is_active"] is False

    resp = await client.post(
        f"{API}/bookings", json=stay("2025-01-01T00:00:00Z", "2025-01-02T00:00:00Z", allocation=ROOM_101)
    )
    assert resp.status_code == 409
    assert resp.json()["detail"]["error"] == "resource_inactive"

    resp = await client.delete(f"{API}/resources/room/nope")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_register_rejects_zero_capacity(client):
    resp = await client.post(f"{API}/resources", json={**ROOM_101, "capacity": 0})
    assert resp.status_code == 422


# ---------------------------------------------------------------------------
# Bookings
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_create_and_fetch_booking(client):
    resp = await client.post(f"{API}/bookings", json=stay("2025-01-01T00:00:00Z", "2025-01-04T00:00:00Z"))
    assert resp.status_code == 201
    booking = resp.json()
    assert booking["status"] == "pending"
    assert booking["nights"] == 3
    assert booking["booking_type"] == "property"
    assert booking["resource_id"] is None

    resp = await client.get(f"{API}/bookings/{booking['id']}")
    assert resp.status_code == 200
    assert resp.json()["reservation_number"] == booking["reservation_number"]

    resp = await client.get(f"{API}/bookings/reference/{booking['reservation_number']}")
    assert resp.status_code == 200
    assert resp.json()["id"] == booking["id"]


@pytest.mark.asyncio
async def test_create_booking_invalid_range(client):
    resp = await client.post(f"{API}/bookings", json=stay("2025-01-05T00:00:00Z", "2025-01-01T00:00:00Z"))
    assert resp.status_code == 400
    assert resp.json()["detail"]["error"] == "invalid_range"


@pytest.mark.asyncio
async def test_create_booking_unknown_target_kind(client):
    body = stay("2025-01-01T00:00:00Z", "2025-01-02T00:00:00Z")
    body["target"] = {"kind": "spaceship", "ship_id": "x"}
    resp = await client.post(f"{API}/bookings", json=body)
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_booking_not_found(client):
    resp = await client.get(f"{API}/bookings/999")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_update_booking_notes(client):
    resp = await client.post(f"{API}/bookings", json=stay("2025-01-01T00:00:00Z", "2025-01-02T00:00:00Z"))
    booking_id = resp.json()["id"]

    resp = await client.patch(f"{API}/bookings/{booking_id}", json={"notes": "late check-in", "payment_status": "paid"})
    assert resp.status_code == 200
    assert resp.json()["notes"] == "late check-in"
    assert resp.json()["payment_status"] == "paid"


@pytest.mark.asyncio
async def test_list_bookings_by_user(client):
    await client.post(f"{API}/bookings", json=stay("2025-01-01T00:00:00Z", "2025-01-02T00:00:00Z", user_id="ana"))
    await client.post(f"{API}/bookings", json=stay("2025-01-03T00:00:00Z", "2025-01-04T00:00:00Z", user_id="ben"))

    resp = await client.get(f"{API}/bookings", params={"user_id": "ana"})
    assert resp.status_code == 200
    assert [b["user_id"] for b in resp.json()] == ["ana"]


# ---------------------------------------------------------------------------
# Allocation
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_create_with_allocation_then_conflict(client, room):
    resp = await client.post(
        f"{API}/bookings", json=stay("2025-01-01T00:00:00Z", "2025-01-05T00:00:00Z", allocation=ROOM_101)
    )
    assert resp.status_code == 201
    first = resp.json()
    assert first["resource_id"] == "room-101"
    assert first["availability_status"] == "allocated"
    assert first["resource_name"] == "Ocean View"

    resp = await client.post(
        f"{API}/bookings", json=stay("2025-01-03T00:00:00Z", "2025-01-07T00:00:00Z", allocation=ROOM_101)
    )
    assert resp.status_code == 409
    assert resp.json()["detail"]["error"] == "capacity_exceeded"

    # Back-to-back stay is fine
    resp = await client.post(
        f"{API}/bookings", json=stay("2025-01-05T00:00:00Z", "2025-01-07T00:00:00Z", allocation=ROOM_101)
    )
    assert resp.status_code == 201


@pytest.mark.asyncio
async def test_check_availability_endpoint(client, room):
    await client.post(f"{API}/bookings", json=stay("2025-01-01T00:00:00Z", "2025-01-05T00:00:00Z", allocation=ROOM_101))

    resp = await client.post(
        f"{API}/resources/check-availability",
        json={**ROOM_101, "check_in_date": "2025-01-03T00:00:00Z", "check_out_date": "2025-01-07T00:00:00Z"},
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["available"] is False
    assert body["available_quantity"] == 0
    assert body["total_capacity"] == 1
    assert len(body["conflicting_bookings"]) == 1
    assert body["conflicting_bookings"][0]["check_in_date"].startswith("2025-01-01T00:00:00")


@pytest.mark.asyncio
async def test_check_availability_rejects_empty_range(client):
    resp = await client.post(
        f"{API}/resources/check-availability",
        json={**ROOM_101, "check_in_date": "2025-01-04T00:00:00Z", "check_out_date": "2025-01-04T00:00:00Z"},
    )
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_allocate_endpoint_records_actor(client, room):
    resp = await client.post(f"{API}/bookings", json=stay("2025-02-01T00:00:00Z", "2025-02-03T00:00:00Z"))
    booking_id = resp.json()["id"]
    token = create_access_token("staff-42")

    resp = await client.post(
        f"{API}/resources/allocate",
        json={**ROOM_101, "booking_id": booking_id},
        headers={"Authorization": f"Bearer {token}"},
    )
    assert resp.status_code == 200
    assert resp.json()["assigned_by"] == "staff-42"


@pytest.mark.asyncio
async def test_allocate_with_bad_token(client, room):
    resp = await client.post(
        f"{API}/resources/allocate",
        json={**ROOM_101, "booking_id": 1},
        headers={"Authorization": "Bearer not-a-jwt"},
    )
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_allocate_missing_booking(client, room):
    resp = await client.post(f"{API}/resources/allocate", json={**ROOM_101, "booking_id": 12345})
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_concurrent_http_allocations(client, room):
    ids = []
    for check_in, check_out in (("2025-03-01", "2025-03-05"), ("2025-03-03", "2025-03-06")):
        resp = await client.post(f"{API}/bookings", json=stay(f"{check_in}T00:00:00Z", f"{check_out}T00:00:00Z"))
        ids.append(resp.json()["id"])

    responses = await asyncio.gather(
        *(client.post(f"{API}/resources/allocate", json={**ROOM_101, "booking_id": i}) for i in ids)
    )
    assert sorted(r.status_code for r in responses) == [200, 409]


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_full_stay_lifecycle(client, room):
    resp = await client.post(
        f"{API}/bookings", json=stay("2025-01-01T00:00:00Z", "2025-01-03T00:00:00Z", allocation=ROOM_101)
    )
    booking_id = resp.json()["id"]

    resp = await client.post(f"{API}/bookings/{booking_id}/check-in")
    assert resp.status_code == 200
    assert resp.json()["status"] == "confirmed"
    assert resp.json()["availability_status"] == "occupied"

    resp = await client.post(f"{API}/bookings/{booking_id}/check-out")
    assert resp.status_code == 200
    assert resp.json()["status"] == "completed"
    assert resp.json()["availability_status"] == "available"

    resp = await client.post(f"{API}/bookings/{booking_id}/cancel", json={"reason": "too late"})
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_cancel_releases_room(client, room):
    resp = await client.post(
        f"{API}/bookings", json=stay("2025-01-01T00:00:00Z", "2025-01-03T00:00:00Z", allocation=ROOM_101)
    )
    booking_id = resp.json()["id"]

    resp = await client.post(f"{API}/bookings/{booking_id}/cancel", json={"reason": "storm"})
    assert resp.status_code == 200
    assert resp.json()["status"] == "cancelled"
    assert resp.json()["cancellation_reason"] == "storm"

    resp = await client.post(
        f"{API}/bookings", json=stay("2025-01-01T00:00:00Z", "2025-01-03T00:00:00Z", allocation=ROOM_101)
    )
    assert resp.status_code == 201


@pytest.mark.asyncio
async def test_status_patch_illegal_transition(client, room):
    resp = await client.post(f"{API}/bookings", json=stay("2025-01-01T00:00:00Z", "2025-01-03T00:00:00Z"))
    booking_id = resp.json()["id"]

    resp = await client.patch(f"{API}/resources/{booking_id}/status", json={"status": "occupied"})
    assert resp.status_code == 409
    assert resp.json()["detail"]["error"] == "illegal_transition"


@pytest.mark.asyncio
async def test_confirm_and_no_show(client):
    resp = await client.post(f"{API}/bookings", json=stay("2025-01-01T00:00:00Z", "2025-01-03T00:00:00Z"))
    booking_id = resp.json()["id"]

    resp = await client.post(f"{API}/bookings/{booking_id}/confirm")
    assert resp.status_code == 200
    assert resp.json()["status"] == "confirmed"

    resp = await client.post(f"{API}/bookings/{booking_id}/no-show")
    assert resp.status_code == 200
    assert resp.json()["status"] == "no-show"


# ---------------------------------------------------------------------------
# Search and reports
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_available_rooms_endpoint(client, room):
    params = {
        "property_id": "prop-1",
        "room_type": "deluxe",
        "check_in_date": "2025-01-01T00:00:00Z",
        "check_out_date": "2025-01-03T00:00:00Z",
    }
    resp = await client.get(f"{API}/resources/rooms/available", params=params)
    assert resp.status_code == 200
    assert resp.json() == {"available": True, "count": 1, "resources": ["room-101"]}

    await client.post(f"{API}/bookings", json=stay("2025-01-01T00:00:00Z", "2025-01-03T00:00:00Z", allocation=ROOM_101))
    resp = await client.get(f"{API}/resources/rooms/available", params=params)
    assert resp.json() == {"available": False, "count": 0, "resources": []}


@pytest.mark.asyncio
async def test_available_seats_endpoint(client):
    for seat in ("2A", "2B"):
        await client.post(
            f"{API}/resources",
            json={"resource_id": seat, "resource_type": "seat", "category": "economy", "parent_ref": "NF9"},
        )
    resp = await client.get(
        f"{API}/resources/seats/available", params={"flight_id": "NF9", "seat_class": "economy", "required_seats": 2}
    )
    assert resp.status_code == 200
    assert resp.json() == {"available": True, "seat_ids": ["2A", "2B"], "free_seats": 2}


@pytest.mark.asyncio
async def test_occupancy_stats_endpoint(client, room):
    await client.post(
        f"{API}/bookings",
        json=stay(
            "2025-01-01T00:00:00Z", "2025-01-03T00:00:00Z", allocation=ROOM_101, status="confirmed", total_amount="250.00"
        ),
    )
    resp = await client.get(
        f"{API}/resources/occupancy/stats",
        params={"resource_type": "room", "start_date": "2025-01-01T00:00:00Z", "end_date": "2025-02-01T00:00:00Z"},
    )
    assert resp.status_code == 200
    stats = resp.json()["stats"]
    assert len(stats) == 1
    assert stats[0]["resource_id"] == "room-101"
    assert stats[0]["total_nights"] == 2
    assert float(stats[0]["total_revenue"]) == 250.0


@pytest.mark.asyncio
async def test_resource_bookings_and_list(client, room):
    resp = await client.post(
        f"{API}/bookings", json=stay("2025-01-01T00:00:00Z", "2025-01-03T00:00:00Z", allocation=ROOM_101)
    )
    booking_id = resp.json()["id"]

    resp = await client.get(f"{API}/resources/room-101/bookings")
    assert resp.status_code == 200
    assert [b["id"] for b in resp.json()] == [booking_id]

    resp = await client.get(f"{API}/resources/list", params={"resource_type": "room", "status": "allocated"})
    assert resp.status_code == 200
    summary = resp.json()[0]
    assert summary["resource_id"] == "room-101"
    assert summary["status"] == "allocated"
    assert summary["bookings"][0]["booking_id"] == booking_id
