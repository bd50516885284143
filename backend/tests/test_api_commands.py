import pytest
from sqlalchemy import select, func

from airpurifier.models.command import Command

DEVICE = "esp32_air_purifier_01"

REPORT = {
    "device_id": DEVICE,
    "system_mode": "online",
    "input_air_quality": 420.5,
    "output_air_quality": 120.0,
    "efficiency": 71.5,
    "fan_state": True,
    "auto_mode": "true",
}


async def test_threshold_command_round_trip(client, admin_headers):
    resp = await client.post(
        "/api/commands/",
        json={"device_id": DEVICE, "command": "threshold", "value": 450},
        headers=admin_headers,
    )
    assert resp.status_code == 201
    command_id = resp.json()["id"]
    assert resp.json()["value"] == "450"
    assert resp.json()["status"] == "pending"

    resp = await client.post("/api/device-data", json=REPORT)
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["device_created"] is True
    assert body["pending_commands"] == 1
    assert body["commands"][0]["id"] == command_id

    resp = await client.patch(f"/api/commands/{command_id}", json={"status": "completed"})
    assert resp.status_code == 200
    assert resp.json()["processed_at"] is not None

    resp = await client.post("/api/readings", json=REPORT)
    assert resp.status_code == 201
    assert resp.json()["pending_commands"] == 0
    assert resp.json()["device_created"] is False


async def test_pending_poll_is_repeatable(client, admin_headers):
    for value in ("on", "off"):
        await client.post(
            "/api/commands/", json={"device_id": DEVICE, "command": "fan", "value": value},
            headers=admin_headers,
        )
    first = await client.get("/api/commands/pending", params={"device_id": DEVICE})
    second = await client.get("/api/commands/pending", params={"device_id": DEVICE})
    assert first.status_code == 200
    assert [c["value"] for c in first.json()] == ["on", "off"]
    assert first.json() == second.json()


async def test_invalid_fan_value_is_rejected(client, admin_headers, session_factory):
    resp = await client.post(
        "/api/commands/",
        json={"device_id": DEVICE, "command": "fan", "value": "maybe"},
        headers=admin_headers,
    )
    assert resp.status_code == 400
    async with session_factory() as session:
        assert (await session.execute(select(func.count(Command.id)))).scalar_one() == 0


@pytest.mark.parametrize("device_id", ["x" * 51, "living room", ""])
async def test_unreportable_device_id_is_rejected(client, admin_headers, session_factory, device_id):
    resp = await client.post(
        "/api/commands/",
        json={"device_id": device_id, "command": "fan", "value": "on"},
        headers=admin_headers,
    )
    assert resp.status_code == 422
    async with session_factory() as session:
        assert (await session.execute(select(func.count(Command.id)))).scalar_one() == 0


async def test_status_for_missing_command(client):
    resp = await client.patch("/api/commands/999999", json={"status": "completed"})
    assert resp.status_code == 404


async def test_reopening_returns_conflict(client, admin_headers):
    resp = await client.post(
        "/api/commands/", json={"device_id": DEVICE, "command": "auto", "value": "on"},
        headers=admin_headers,
    )
    command_id = resp.json()["id"]
    await client.patch(f"/api/commands/{command_id}", json={"status": "failed"})

    resp = await client.patch(f"/api/commands/{command_id}", json={"status": "pending"})
    assert resp.status_code == 409
    assert resp.json()["current_status"] == "failed"


async def test_unknown_status_is_bad_request(client, admin_headers):
    resp = await client.post(
        "/api/commands/", json={"device_id": DEVICE, "command": "fan", "value": "on"},
        headers=admin_headers,
    )
    resp = await client.patch(f"/api/commands/{resp.json()['id']}", json={"status": "done"})
    assert resp.status_code == 400


async def test_enqueue_requires_auth(client):
    resp = await client.post("/api/commands/", json={"device_id": DEVICE, "command": "fan", "value": "on"})
    assert resp.status_code in (401, 403)


async def test_non_admin_cannot_queue_for_unregistered_device(client, user_headers):
    resp = await client.post(
        "/api/commands/", json={"device_id": "nobody-owns-me", "command": "fan", "value": "on"},
        headers=user_headers,
    )
    assert resp.status_code == 404


async def test_owner_can_queue_and_list(client, user_headers, other_headers):
    resp = await client.post(
        "/api/devices/register",
        json={"device_id": "alice-1", "device_name": "Bedroom", "location": "Upstairs",
              "username": "esp", "password": "devpass1"},
        headers=user_headers,
    )
    assert resp.status_code == 201

    resp = await client.post(
        "/api/commands/", json={"device_id": "alice-1", "command": "threshold", "value": "800"},
        headers=user_headers,
    )
    assert resp.status_code == 201

    listed = await client.get("/api/commands/", params={"device_id": "alice-1"}, headers=user_headers)
    assert [c["value"] for c in listed.json()] == ["800"]

    denied = await client.post(
        "/api/commands/", json={"device_id": "alice-1", "command": "fan", "value": "on"},
        headers=other_headers,
    )
    assert denied.status_code == 403

    missing_filter = await client.get("/api/commands/", headers=user_headers)
    assert missing_filter.status_code == 400
