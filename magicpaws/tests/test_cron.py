"""Cron trigger for the reminder sweep."""

from magicpaws.core.config import settings


def test_cron_without_secret_runs(client):
    resp = client.post("/api/cron/reminders")
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["total_bookings"] == 0
    assert set(body) == {"success", "total_bookings", "sent_count", "skipped_count", "failed_count", "failures"}


def test_cron_requires_secret_when_configured(client, monkeypatch):
    monkeypatch.setattr(settings, "CRON_SECRET", "s3cret")

    assert client.post("/api/cron/reminders").status_code == 401
    resp = client.post("/api/cron/reminders", headers={"Authorization": "Bearer wrong"})
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "unauthenticated"

    resp = client.post("/api/cron/reminders", headers={"Authorization": "Bearer s3cret"})
    assert resp.status_code == 200
