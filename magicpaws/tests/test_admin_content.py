"""Admin authoring routes."""

from magicpaws.core.config import settings


def admin_headers(auth_headers):
    return auth_headers("user_admin", settings.ADMIN_EMAIL, "Samantha")


def test_authoring_flow(client, auth_headers):
    headers = admin_headers(auth_headers)

    resp = client.post("/api/admin/content/tiers", headers=headers, json={"name": "Adolescent Dogs", "price": "79.00"})
    assert resp.status_code == 201
    tier = resp.json()["tier"]
    assert tier["slug"] == "adolescent-dogs"

    resp = client.post("/api/admin/content/modules", headers=headers, json={"tier_id": tier["id"], "title": "Recall"})
    assert resp.status_code == 201
    module = resp.json()["module"]

    resp = client.post(
        "/api/admin/content/lessons",
        headers=headers,
        json={"module_id": module["id"], "title": "Come When Called", "video_duration": 240, "is_published": False},
    )
    assert resp.status_code == 201
    lesson = resp.json()["lesson"]
    assert resp.json()["announced"] == 0

    resp = client.patch(f"/api/admin/content/lessons/{lesson['id']}", headers=headers, json={"is_published": True})
    assert resp.json()["lesson"]["is_published"] is True

    resp = client.get("/api/admin/content/tiers", headers=headers)
    tiers = resp.json()["tiers"]
    assert tiers[0]["modules"][0]["lessons"][0]["title"] == "Come When Called"

    resp = client.get("/api/content/tiers/adolescent-dogs")
    assert resp.json()["lesson_count"] == 1


def test_duplicate_tier_slug(client, auth_headers, catalog):
    resp = client.post(
        "/api/admin/content/tiers",
        headers=admin_headers(auth_headers),
        json={"name": "Puppy Basics", "price": "10.00"},
    )
    assert resp.status_code == 409
    assert resp.json()["error"]["code"] == "duplicate_slug"


def test_update_tier(client, auth_headers, catalog):
    headers = admin_headers(auth_headers)
    resp = client.patch("/api/admin/content/tiers/puppy-basics", headers=headers, json={"is_active": False})
    assert resp.status_code == 200
    assert client.get("/api/content/tiers").json() == []

    resp = client.patch("/api/admin/content/tiers/missing", headers=headers, json={"name": "X"})
    assert resp.status_code == 404


def test_invalid_price(client, auth_headers):
    resp = client.post("/api/admin/content/tiers", headers=admin_headers(auth_headers), json={"name": "Free", "price": "0"})
    assert resp.status_code == 400
    assert resp.json()["error"]["fields"][0]["field"] == "price"


def test_lesson_under_unknown_module(client, auth_headers):
    resp = client.post(
        "/api/admin/content/lessons",
        headers=admin_headers(auth_headers),
        json={"module_id": "missing", "title": "Orphan"},
    )
    assert resp.status_code == 404


def test_create_service(client, auth_headers):
    resp = client.post(
        "/api/admin/services",
        headers=admin_headers(auth_headers),
        json={"name": "Day Training", "base_price": "95.00", "duration_minutes": 90},
    )
    assert resp.status_code == 201
    assert resp.json()["service"]["slug"] == "day-training"


def test_clients_cannot_author(client, auth_headers):
    resp = client.post("/api/admin/content/tiers", headers=auth_headers(), json={"name": "Sneaky", "price": "1.00"})
    assert resp.status_code == 403
    assert resp.json()["error"]["code"] == "forbidden"


def test_notify_announces_to_owners(client, auth_headers, alice, catalog, grant_purchase):
    grant_purchase(alice.id, catalog["tier"]["id"])
    resp = client.post(
        "/api/admin/content/lessons",
        headers=admin_headers(auth_headers),
        json={"module_id": catalog["module"]["id"], "title": "Down Stay", "notify": True},
    )
    assert resp.status_code == 201
    assert resp.json()["announced"] == 1
