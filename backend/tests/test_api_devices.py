from sqlalchemy import select, func

from airpurifier.models.command import Command
from airpurifier.models.device import CurrentStatus, DeviceSettings
from airpurifier.models.reading import Reading

REGISTRATION = {
    "device_id": "alice-purifier",
    "device_name": "Living room",
    "location": "Ground floor",
    "username": "esp32",
    "password": "devpass1",
}


async def _register(client, headers, **overrides):
    body = dict(REGISTRATION, **overrides)
    return await client.post("/api/devices/register", json=body, headers=headers)


async def test_register_and_list(client, user_headers, session_factory):
    resp = await _register(client, user_headers)
    assert resp.status_code == 201
    body = resp.json()
    assert body["device_id"] == "alice-purifier"
    assert body["access_type"] == "owner"
    assert body["owner_username"] == "alice"
    assert body["is_online"] is False
    assert body["status"]["system_mode"] == "offline"
    assert body["status"]["threshold"] == 300

    listing = await client.get("/api/devices/", headers=user_headers)
    assert [d["device_id"] for d in listing.json()] == ["alice-purifier"]

    async with session_factory() as session:
        settings_rows = (await session.execute(select(func.count(DeviceSettings.id)))).scalar_one()
    assert settings_rows == 1


async def test_register_generates_id_and_rejects_duplicates(client, user_headers):
    resp = await _register(client, user_headers, device_id=None)
    assert resp.status_code == 201
    assert resp.json()["device_id"].startswith("esp32_")

    await _register(client, user_headers)
    dup = await _register(client, user_headers)
    assert dup.status_code == 400


async def test_register_validation(client, user_headers):
    assert (await _register(client, user_headers, password="123")).status_code == 422
    assert (await _register(client, user_headers, device_name="  ")).status_code == 422


async def test_credentials_are_encrypted_but_readable_by_owner(client, user_headers, other_headers, session_factory):
    await _register(client, user_headers)
    resp = await client.get("/api/devices/alice-purifier/credentials", headers=user_headers)
    assert resp.json() == {"device_id": "alice-purifier", "username": "esp32", "password": "devpass1"}

    from airpurifier.models.device import Device
    async with session_factory() as session:
        stored = (await session.execute(select(Device.device_password))).scalar_one()
    assert stored != "devpass1"

    denied = await client.get("/api/devices/alice-purifier/credentials", headers=other_headers)
    assert denied.status_code == 403


async def test_update_and_access_control(client, user_headers, other_headers, admin_headers):
    await _register(client, user_headers)

    assert (await client.get("/api/devices/alice-purifier", headers=other_headers)).status_code == 403
    assert (await client.get("/api/devices/nope", headers=user_headers)).status_code == 404

    resp = await client.put("/api/devices/alice-purifier", json={"name": "Lounge"}, headers=user_headers)
    assert resp.status_code == 200
    assert resp.json()["name"] == "Lounge"
    assert resp.json()["location"] == "Ground floor"

    resp = await client.get("/api/devices/alice-purifier", headers=admin_headers)
    assert resp.json()["access_type"] == "admin"

    everything = await client.get("/api/devices/", params={"all_devices": True}, headers=admin_headers)
    assert [d["device_id"] for d in everything.json()] == ["alice-purifier"]
    own_only = await client.get("/api/devices/", headers=admin_headers)
    assert own_only.json() == []


async def test_sharing(client, user_headers, other_headers, other_user):
    await _register(client, user_headers)

    resp = await client.post(
        "/api/devices/alice-purifier/share", json={"shared_username": "bob"}, headers=user_headers,
    )
    assert resp.status_code == 201
    share_id = resp.json()["id"]

    again = await client.post(
        "/api/devices/alice-purifier/share", json={"shared_username": "bob"}, headers=user_headers,
    )
    assert again.status_code == 400
    self_share = await client.post(
        "/api/devices/alice-purifier/share", json={"shared_username": "alice"}, headers=user_headers,
    )
    assert self_share.status_code == 400
    nobody = await client.post(
        "/api/devices/alice-purifier/share", json={"shared_username": "zed"}, headers=user_headers,
    )
    assert nobody.status_code == 404

    bobs = await client.get("/api/devices/", headers=other_headers)
    assert [(d["device_id"], d["access_type"]) for d in bobs.json()] == [("alice-purifier", "shared")]
    assert (await client.get("/api/devices/alice-purifier", headers=other_headers)).status_code == 200

    # view-only
    resp = await client.put("/api/devices/alice-purifier", json={"name": "Mine"}, headers=other_headers)
    assert resp.status_code == 403

    shares = await client.get("/api/devices/alice-purifier/shares", headers=user_headers)
    assert [s["shared_username"] for s in shares.json()] == ["bob"]

    resp = await client.delete(f"/api/devices/alice-purifier/shares/{share_id}", headers=user_headers)
    assert resp.status_code == 200
    assert (await client.get("/api/devices/", headers=other_headers)).json() == []


async def test_delete_removes_everything(client, user_headers, session_factory):
    await _register(client, user_headers)
    await client.post("/api/readings", json={"device_id": "alice-purifier", "input_air_quality": 10})
    await client.post(
        "/api/commands/", json={"device_id": "alice-purifier", "command": "fan", "value": "on"},
        headers=user_headers,
    )

    resp = await client.delete("/api/devices/alice-purifier", headers=user_headers)
    assert resp.status_code == 200

    async with session_factory() as session:
        for model in (Reading, Command, CurrentStatus, DeviceSettings):
            count = (await session.execute(select(func.count()).select_from(model))).scalar_one()
            assert count == 0, model.__tablename__


async def test_liveness_debug(client, user_headers, admin_headers):
    await _register(client, user_headers)
    await client.post("/api/readings", json={"device_id": "alice-purifier"})

    report = await client.get("/api/devices/alice-purifier/liveness", headers=user_headers)
    assert report.status_code == 200
    assert report.json()["is_online"] is True
    assert report.json()["stored_online"] is True

    forbidden = await client.post("/api/devices/alice-purifier/force-offline", headers=user_headers)
    assert forbidden.status_code == 403

    resp = await client.post("/api/devices/alice-purifier/force-offline", headers=admin_headers)
    assert resp.status_code == 200
    report = await client.get("/api/devices/alice-purifier/liveness", headers=user_headers)
    assert report.json()["stored_online"] is False

    missing = await client.post("/api/devices/ghost/force-online", headers=admin_headers)
    assert missing.status_code == 404


async def test_system_events_listing(client, admin_headers, session_factory):
    from airpurifier.routers.system_events import log_system_event

    await log_system_event(
        "warning", "offline_sweep", "device_offline", "dev silent",
        resource_type="device", resource_id="dev", session_factory=session_factory,
    )
    resp = await client.get("/api/system-events/", params={"source": "offline_sweep"}, headers=admin_headers)
    assert resp.status_code == 200
    assert [e["resource_id"] for e in resp.json()] == ["dev"]
