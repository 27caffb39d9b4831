"""
Billing API routes.

- GET  /api/subscriptions          latest subscription and whether it is current
- POST /api/subscriptions          start live-support subscription checkout
- POST /api/subscriptions/cancel   cancel the active subscription
- POST /api/webhooks/stripe        Stripe webhook (signature verified, idempotent)
"""
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request

from magicpaws.core.auth import get_current_principal
from magicpaws.features.billing.service import (
    cancel_subscription,
    get_subscription_status,
    start_subscription_checkout,
)
from magicpaws.features.billing.webhooks import process_webhook_event
from magicpaws.models.principal import Principal


router = APIRouter(tags=["billing"])


@router.get("/api/subscriptions")
def subscription_status(principal: Principal = Depends(get_current_principal)) -> Dict[str, Any]:
    return get_subscription_status(principal.id)


@router.post("/api/subscriptions")
def create_subscription(request: Request, principal: Principal = Depends(get_current_principal)):
    """
    Errors:
        409 already_subscribed: an active subscription exists
        503: billing not configured
    """
    url = start_subscription_checkout(principal, origin=request.headers.get("origin"))
    return {"url": url}


@router.post("/api/subscriptions/cancel")
def cancel(principal: Principal = Depends(get_current_principal)):
    return {"success": True, "subscription": cancel_subscription(principal)}


@router.post("/api/webhooks/stripe")
async def stripe_webhook(request: Request):
    """
    Handle Stripe webhook events.

    Errors:
        400: invalid signature or payload
        503: billing disabled
    """
    # Raw body is required for signature verification
    body = await request.body()
    result = process_webhook_event(dict(request.headers), body)
    return {"received": True, "event_id": result.event_id, "duplicate": result.duplicate}
