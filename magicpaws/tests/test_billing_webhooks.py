"""Stripe webhook processing: idempotency and state changes per event type."""

from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import Mock, patch

import pytest
from sqlalchemy import insert, select

from magicpaws.core.database import billing_events, get_db_session, subscriptions, tier_purchases
from magicpaws.core.errors import ServiceUnavailableError
from magicpaws.core.metrics import billing_webhooks_total
from magicpaws.features.billing.provider import BillingWebhookError, BillingWebhookEvent
from magicpaws.features.billing.webhooks import process_webhook_event


@pytest.fixture
def provider():
    with patch("magicpaws.features.billing.service.get_provider") as mock_get:
        mock_provider = Mock()
        mock_get.return_value = mock_provider
        yield mock_provider


def deliver(provider, event, body=b'{"id": "evt"}'):
    provider.handle_webhook.return_value = event
    return process_webhook_event({"stripe-signature": "t=1,v1=sig"}, body)


def tier_checkout_event(event_id, user_id, tier_id, amount_total=4900):
    return BillingWebhookEvent(
        event_id=event_id,
        event_type="checkout.session.completed",
        data={"id": "cs_1", "amount_total": amount_total, "payment_intent": "pi_123"},
        metadata={"type": "tier_purchase", "userId": user_id, "tierId": tier_id, "tierSlug": "puppy-basics"},
    )


def _event_row(event_id):
    with get_db_session() as session:
        return session.execute(select(billing_events).where(billing_events.c.stripe_event_id == event_id)).first()


def _purchases(user_id):
    with get_db_session() as session:
        return session.execute(select(tier_purchases).where(tier_purchases.c.user_id == user_id)).fetchall()


def _subscription(user_id):
    with get_db_session() as session:
        return session.execute(select(subscriptions).where(subscriptions.c.user_id == user_id)).first()


def _seed_subscription(user_id, stripe_id, status="ACTIVE"):
    with get_db_session() as session:
        session.execute(
            insert(subscriptions).values(user_id=user_id, status=status, stripe_subscription_id=stripe_id)
        )


def test_tier_checkout_fulfils_purchase(provider, alice, catalog):
    result = deliver(provider, tier_checkout_event("evt_1", alice.id, catalog["tier"]["id"]))

    assert result.duplicate is False
    rows = _purchases(alice.id)
    assert len(rows) == 1
    assert rows[0].stripe_payment_id == "pi_123"
    assert Decimal(str(rows[0].amount)) == Decimal("49.00")

    row = _event_row("evt_1")
    assert row.processed is True
    assert row.processed_at is not None
    assert billing_webhooks_total.value({"event_type": "checkout.session.completed"}) == 1


def test_redelivered_event_is_skipped(provider, alice, catalog):
    event = tier_checkout_event("evt_dup", alice.id, catalog["tier"]["id"])
    deliver(provider, event)

    with patch("magicpaws.features.purchases.service.fulfill_tier_purchase") as fulfil:
        result = deliver(provider, event)

    assert result.duplicate is True
    fulfil.assert_not_called()
    assert len(_purchases(alice.id)) == 1
    assert billing_webhooks_total.value({"event_type": "duplicate"}) == 1


def test_distinct_events_for_same_purchase_grant_once(provider, alice, catalog):
    tier_id = catalog["tier"]["id"]
    deliver(provider, tier_checkout_event("evt_a", alice.id, tier_id))
    result = deliver(provider, tier_checkout_event("evt_b", alice.id, tier_id))

    assert result.duplicate is False
    assert len(_purchases(alice.id)) == 1


def test_failed_event_is_recorded_and_retried(provider, alice, catalog):
    event = tier_checkout_event("evt_retry", alice.id, catalog["tier"]["id"])

    with patch(
        "magicpaws.features.purchases.service.fulfill_tier_purchase",
        side_effect=RuntimeError("database went away"),
    ):
        with pytest.raises(RuntimeError):
            deliver(provider, event)

    row = _event_row("evt_retry")
    assert row.processed is False
    assert "database went away" in row.error

    result = deliver(provider, event)
    assert result.duplicate is False
    assert len(_purchases(alice.id)) == 1
    row = _event_row("evt_retry")
    assert row.processed is True
    assert row.error is None


def test_tier_checkout_without_metadata_is_rejected(provider):
    event = BillingWebhookEvent("evt_bad", "checkout.session.completed", {"id": "cs_1"}, {"type": "tier_purchase"})
    with pytest.raises(BillingWebhookError):
        deliver(provider, event)
    assert _event_row("evt_bad").processed is False


def test_subscription_checkout_activates(provider, alice):
    event = BillingWebhookEvent(
        "evt_sub",
        "checkout.session.completed",
        {"id": "cs_2", "subscription": "sub_123"},
        {"type": "subscription", "userId": alice.id, "subscriptionType": "LIVE_SUPPORT"},
    )
    deliver(provider, event)

    row = _subscription(alice.id)
    assert row.status == "ACTIVE"
    assert row.stripe_subscription_id == "sub_123"
    assert row.current_period_end is not None


def test_subscription_updated_and_deleted(provider, alice):
    _seed_subscription(alice.id, "sub_9")

    deliver(
        provider,
        BillingWebhookEvent(
            "evt_upd",
            "customer.subscription.updated",
            {"id": "sub_9", "status": "active", "current_period_start": 1767225600, "current_period_end": 1769904000},
        ),
    )
    row = _subscription(alice.id)
    assert row.status == "ACTIVE"
    assert row.current_period_end.replace(tzinfo=timezone.utc) == datetime(2026, 2, 1, tzinfo=timezone.utc)

    deliver(provider, BillingWebhookEvent("evt_del", "customer.subscription.deleted", {"id": "sub_9"}))
    row = _subscription(alice.id)
    assert row.status == "CANCELLED"
    assert row.cancelled_at is not None


def test_invoice_events(provider, alice):
    _seed_subscription(alice.id, "sub_7")

    deliver(provider, BillingWebhookEvent("evt_fail", "invoice.payment_failed", {"subscription": "sub_7"}))
    assert _subscription(alice.id).status == "PAST_DUE"

    # The first invoice of a subscription does not reactivate it
    deliver(
        provider,
        BillingWebhookEvent(
            "evt_first", "invoice.payment_succeeded", {"subscription": "sub_7", "billing_reason": "subscription_create"}
        ),
    )
    assert _subscription(alice.id).status == "PAST_DUE"

    deliver(
        provider,
        BillingWebhookEvent(
            "evt_cycle",
            "invoice.payment_succeeded",
            {"subscription": "sub_7", "billing_reason": "subscription_cycle", "period_end": 1769904000},
        ),
    )
    assert _subscription(alice.id).status == "ACTIVE"


def test_unhandled_event_type_is_marked_processed(provider):
    result = deliver(provider, BillingWebhookEvent("evt_misc", "customer.created", {"id": "cus_1"}))
    assert result.duplicate is False
    assert _event_row("evt_misc").processed is True


def test_billing_disabled():
    with pytest.raises(ServiceUnavailableError):
        process_webhook_event({}, b"{}")


def test_webhook_endpoint(client, provider, alice, catalog):
    provider.handle_webhook.return_value = tier_checkout_event("evt_http", alice.id, catalog["tier"]["id"])

    resp = client.post("/api/webhooks/stripe", content=b'{"id": "evt_http"}', headers={"stripe-signature": "sig"})
    assert resp.status_code == 200
    assert resp.json() == {"received": True, "event_id": "evt_http", "duplicate": False}

    resp = client.post("/api/webhooks/stripe", content=b'{"id": "evt_http"}', headers={"stripe-signature": "sig"})
    assert resp.json()["duplicate"] is True

    headers, body = provider.handle_webhook.call_args.args
    assert headers["stripe-signature"] == "sig"
    assert body == b'{"id": "evt_http"}'


def test_webhook_endpoint_bad_signature(client, provider):
    provider.handle_webhook.side_effect = BillingWebhookError("Invalid signature")
    resp = client.post("/api/webhooks/stripe", content=b"{}", headers={"stripe-signature": "bad"})
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "invalid_webhook"


def test_webhook_endpoint_disabled(client):
    resp = client.post("/api/webhooks/stripe", content=b"{}")
    assert resp.status_code == 503
    assert resp.json()["error"]["code"] == "service_unavailable"
