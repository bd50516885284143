async def test_admin_manages_users(client, admin_headers, admin_user):
    resp = await client.post(
        "/api/users/",
        json={"username": "Frank", "password": "frankpw1", "is_admin": False},
        headers=admin_headers,
    )
    assert resp.status_code == 201
    frank = resp.json()
    assert frank["username"] == "frank"
    assert frank["must_change_password"] is True

    dup = await client.post(
        "/api/users/", json={"username": "frank", "password": "frankpw1"}, headers=admin_headers,
    )
    assert dup.status_code == 400

    resp = await client.put(f"/api/users/{frank['id']}", json={"is_admin": True}, headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json()["is_admin"] is True

    listing = await client.get("/api/users/", headers=admin_headers)
    assert {u["username"] for u in listing.json()} == {"admin", "frank"}

    resp = await client.delete(f"/api/users/{frank['id']}", headers=admin_headers)
    assert resp.status_code == 200
    resp = await client.get(f"/api/users/{frank['id']}", headers=admin_headers)
    assert resp.json()["is_active"] is False

    logs = await client.get("/api/users/audit/logs", headers=admin_headers)
    actions = [log["action"] for log in logs.json()]
    assert "user_created" in actions
    assert "user_deleted" in actions


async def test_deactivated_user_is_reactivated_on_create(client, admin_headers, regular_user):
    await client.delete(f"/api/users/{regular_user.id}", headers=admin_headers)
    resp = await client.post(
        "/api/users/", json={"username": "alice", "password": "fresh-pass"}, headers=admin_headers,
    )
    assert resp.status_code == 201
    assert resp.json()["id"] == regular_user.id
    assert resp.json()["is_active"] is True


async def test_admin_cannot_remove_self(client, admin_headers, admin_user):
    resp = await client.delete(f"/api/users/{admin_user.id}", headers=admin_headers)
    assert resp.status_code == 400
    resp = await client.put(f"/api/users/{admin_user.id}", json={"is_admin": False}, headers=admin_headers)
    assert resp.status_code == 400


async def test_regular_user_is_forbidden(client, user_headers):
    assert (await client.get("/api/users/", headers=user_headers)).status_code == 403
    assert (await client.get("/api/users/audit/logs", headers=user_headers)).status_code == 403
    assert (await client.get("/api/system-events/", headers=user_headers)).status_code == 403


async def test_missing_user_is_404(client, admin_headers):
    assert (await client.get("/api/users/4242", headers=admin_headers)).status_code == 404


async def test_profile(client, user_headers, other_user):
    resp = await client.get("/api/users/me/profile", headers=user_headers)
    assert resp.json()["username"] == "alice"

    taken = await client.put("/api/users/me/profile", json={"username": "bob"}, headers=user_headers)
    assert taken.status_code == 400

    resp = await client.put("/api/users/me/profile", json={"username": "alice2"}, headers=user_headers)
    assert resp.status_code == 200
    assert resp.json()["username"] == "alice2"


async def test_deactivated_token_is_rejected(client, admin_headers, regular_user, headers_for):
    await client.delete(f"/api/users/{regular_user.id}", headers=admin_headers)
    resp = await client.get("/api/auth/me", headers=headers_for(regular_user))
    assert resp.status_code == 403
