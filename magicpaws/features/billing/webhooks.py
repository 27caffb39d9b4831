"""
Billing webhook processing (idempotent).

Each Stripe event is recorded in billing_events before it is applied; the
unique stripe_event_id makes redelivered events a no-op once processed.
An event whose handler failed stays unprocessed and is applied again on
the next delivery; fulfilment is idempotent, so replays are safe.
"""
import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Optional

from sqlalchemy import select, insert, update
from sqlalchemy.exc import IntegrityError

from magicpaws.core.database import get_db_session, billing_events, utc_now
from magicpaws.core.errors import ServiceUnavailableError
from magicpaws.core.logging import log_event
from magicpaws.core.metrics import billing_webhooks_total
from magicpaws.core.tracing import start_span
from magicpaws.features.billing import service as billing_service
from magicpaws.features.billing.provider import BillingWebhookError, BillingWebhookEvent
from magicpaws.features.purchases import service as purchases_service

logger = logging.getLogger("magicpaws")


@dataclass
class BillingWebhookResult:
    event_id: str
    event_type: str
    duplicate: bool = False


def _from_timestamp(value) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _amount_from_minor(value) -> Decimal:
    return Decimal(int(value or 0)) / Decimal(100)


def _on_checkout_completed(event: BillingWebhookEvent) -> None:
    data, meta = event.data, event.metadata
    kind = meta.get("type")
    user_id = meta.get("userId")

    if kind == purchases_service.PURCHASE_TYPE_TIER:
        tier_id = meta.get("tierId")
        if not user_id or not tier_id:
            raise BillingWebhookError("Tier checkout is missing userId/tierId metadata")
        purchases_service.fulfill_tier_purchase(
            user_id,
            tier_id,
            amount=_amount_from_minor(data.get("amount_total")),
            payment_ref=data.get("payment_intent"),
        )
    elif kind == "subscription":
        if not user_id:
            raise BillingWebhookError("Subscription checkout is missing userId metadata")
        billing_service.activate_subscription(user_id, data.get("subscription"))
    else:
        logger.info("billing.checkout_ignored", extra={"event_id": event.event_id, "checkout_type": kind})


def _on_subscription_updated(event: BillingWebhookEvent) -> None:
    data = event.data
    status = billing_service.STATUS_ACTIVE if data.get("status") == "active" else billing_service.STATUS_CANCELLED
    billing_service.set_subscription_status(
        data["id"],
        status,
        period_start=_from_timestamp(data.get("current_period_start")),
        period_end=_from_timestamp(data.get("current_period_end")),
    )


def _on_subscription_deleted(event: BillingWebhookEvent) -> None:
    billing_service.set_subscription_status(event.data["id"], billing_service.STATUS_CANCELLED)


def _on_invoice_paid(event: BillingWebhookEvent) -> None:
    data = event.data
    subscription_id = data.get("subscription")
    # Only renewals; the first invoice is covered by checkout.session.completed
    if not subscription_id or data.get("billing_reason") != "subscription_cycle":
        return
    billing_service.set_subscription_status(
        subscription_id,
        billing_service.STATUS_ACTIVE,
        period_start=_from_timestamp(data.get("period_start")),
        period_end=_from_timestamp(data.get("period_end")),
    )


def _on_invoice_failed(event: BillingWebhookEvent) -> None:
    subscription_id = event.data.get("subscription")
    if subscription_id:
        billing_service.set_subscription_status(subscription_id, billing_service.STATUS_PAST_DUE)


HANDLERS = {
    "checkout.session.completed": _on_checkout_completed,
    "customer.subscription.updated": _on_subscription_updated,
    "customer.subscription.deleted": _on_subscription_deleted,
    "invoice.payment_succeeded": _on_invoice_paid,
    "invoice.payment_failed": _on_invoice_failed,
}


def apply_event(event: BillingWebhookEvent) -> None:
    handler = HANDLERS.get(event.event_type)
    if handler is None:
        logger.info("billing.webhook_unhandled", extra={"event_id": event.event_id, "event_type": event.event_type})
        return
    handler(event)


def process_webhook_event(headers: Dict[str, str], body: bytes) -> BillingWebhookResult:
    """
    Process billing webhook event (idempotent).

    1. Verify signature
    2. Skip events already processed
    3. Record the event
    4. Apply state changes
    5. Mark as processed, or store the error and re-raise

    Raises:
        ServiceUnavailableError: billing not configured
        BillingWebhookError: signature invalid or payload malformed
    """
    provider = billing_service.get_provider()
    if provider is None:
        raise ServiceUnavailableError("Billing is not configured", provider="stripe")

    event = provider.handle_webhook(headers, body)
    payload_hash = hashlib.sha256(body).hexdigest()

    with start_span("billing.webhook", {"event_type": event.event_type, "event_id": event.event_id}):
        with get_db_session() as session:
            existing = session.execute(
                select(billing_events.c.id, billing_events.c.processed).where(billing_events.c.stripe_event_id == event.event_id)
            ).first()
        if existing is not None and existing.processed:
            billing_webhooks_total.inc(labels={"event_type": "duplicate"})
            logger.info("billing.webhook_duplicate", extra={"event_id": event.event_id})
            return BillingWebhookResult(event.event_id, event.event_type, duplicate=True)

        if existing is None:
            try:
                with get_db_session() as session:
                    session.execute(
                        insert(billing_events).values(
                            stripe_event_id=event.event_id,
                            event_type=event.event_type,
                            payload_hash=payload_hash,
                            processed=False,
                        )
                    )
            except IntegrityError:
                # Another delivery of the same event won the insert
                billing_webhooks_total.inc(labels={"event_type": "duplicate"})
                return BillingWebhookResult(event.event_id, event.event_type, duplicate=True)

        try:
            apply_event(event)
        except Exception as e:
            with get_db_session() as session:
                session.execute(
                    update(billing_events)
                    .where(billing_events.c.stripe_event_id == event.event_id)
                    .values(error=str(e)[:1000])
                )
            log_event(
                "error", "billing.webhook_failed", event_id=event.event_id, event_type=event.event_type, error=e, exc_info=True
            )
            raise

        with get_db_session() as session:
            session.execute(
                update(billing_events)
                .where(billing_events.c.stripe_event_id == event.event_id)
                .values(processed=True, processed_at=utc_now(), error=None)
            )

    billing_webhooks_total.inc(labels={"event_type": event.event_type})
    logger.info("billing.webhook_processed", extra={"event_id": event.event_id, "event_type": event.event_type})
    return BillingWebhookResult(event.event_id, event.event_type)
