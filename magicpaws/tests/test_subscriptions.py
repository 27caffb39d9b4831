"""Live-support subscription status, checkout and cancellation."""

from datetime import timedelta
from unittest.mock import Mock, patch

import pytest
from sqlalchemy import insert, select

from magicpaws.core.database import get_db_session, subscriptions, utc_now
from magicpaws.core.errors import ConflictError, NotFoundError
from magicpaws.features.billing.service import (
    cancel_subscription,
    get_subscription_status,
    start_subscription_checkout,
)


@pytest.fixture
def provider():
    with patch("magicpaws.features.billing.service.get_provider") as mock_get:
        mock_provider = Mock()
        mock_provider.ensure_customer.return_value = "cus_alice"
        mock_provider.create_subscription_checkout.return_value = "https://checkout.stripe.test/sub"
        mock_get.return_value = mock_provider
        yield mock_provider


def _seed(user_id, status="ACTIVE", stripe_id="sub_1", period_end=None):
    with get_db_session() as session:
        session.execute(
            insert(subscriptions).values(
                user_id=user_id,
                status=status,
                stripe_subscription_id=stripe_id,
                current_period_start=utc_now(),
                current_period_end=period_end or utc_now() + timedelta(days=20),
            )
        )


def test_status_without_subscription(alice):
    assert get_subscription_status(alice.id) == {"has_subscription": False, "subscription": None}


def test_status_with_active_subscription(alice):
    _seed(alice.id)
    status = get_subscription_status(alice.id)
    assert status["has_subscription"] is True
    assert status["subscription"]["status"] == "ACTIVE"


def test_expired_period_is_not_current(alice):
    _seed(alice.id, period_end=utc_now() - timedelta(days=1))
    assert get_subscription_status(alice.id)["has_subscription"] is False


def test_checkout(provider, alice):
    url = start_subscription_checkout(alice, origin="https://app.example.com")
    assert url == "https://checkout.stripe.test/sub"
    kwargs = provider.create_subscription_checkout.call_args.kwargs
    assert kwargs["customer_id"] == "cus_alice"
    assert kwargs["metadata"]["type"] == "subscription"
    assert kwargs["metadata"]["userId"] == alice.id


def test_customer_id_is_cached(provider, alice):
    start_subscription_checkout(alice)
    start_subscription_checkout(alice)
    assert provider.ensure_customer.call_count == 1


def test_checkout_refused_when_subscribed(provider, alice):
    _seed(alice.id)
    with pytest.raises(ConflictError) as exc:
        start_subscription_checkout(alice)
    assert exc.value.code == "already_subscribed"
    provider.create_subscription_checkout.assert_not_called()


def test_cancel_without_subscription(provider, alice):
    with pytest.raises(NotFoundError):
        cancel_subscription(alice)
    provider.cancel_subscription.assert_not_called()


def test_cancel(provider, alice):
    _seed(alice.id, stripe_id="sub_cancel_me")
    result = cancel_subscription(alice)

    provider.cancel_subscription.assert_called_once_with("sub_cancel_me")
    assert result["status"] == "CANCELLED"
    with get_db_session() as session:
        row = session.execute(select(subscriptions).where(subscriptions.c.user_id == alice.id)).first()
    assert row.status == "CANCELLED"
    assert row.cancelled_at is not None


def test_subscription_endpoints(client, auth_headers, provider, alice):
    resp = client.get("/api/subscriptions", headers=auth_headers())
    assert resp.status_code == 200
    assert resp.json()["has_subscription"] is False

    resp = client.post("/api/subscriptions", headers=auth_headers())
    assert resp.json() == {"url": "https://checkout.stripe.test/sub"}

    resp = client.post("/api/subscriptions/cancel", headers=auth_headers())
    assert resp.status_code == 404

    _seed(alice.id)
    resp = client.post("/api/subscriptions/cancel", headers=auth_headers())
    assert resp.status_code == 200
    assert resp.json()["success"] is True
    assert resp.json()["subscription"]["status"] == "CANCELLED"
