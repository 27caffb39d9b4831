"""
Billing service orchestrator.

Coordinates:
- Provider access (billing is enabled when STRIPE_SECRET_KEY is set)
- Customer management
- Live-support subscription lifecycle

All Stripe-specific code is in stripe_provider.py; webhook handling lives
in webhooks.py.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional, Dict, Any

from sqlalchemy import select, insert, update, and_
from sqlalchemy.exc import IntegrityError

from magicpaws.core.config import settings
from magicpaws.core.database import get_db_session, billing_customers, subscriptions, utc_now, ensure_utc
from magicpaws.core.errors import ConflictError, NotFoundError, ServiceUnavailableError, UnauthenticatedError
from magicpaws.features.billing.provider import BillingProvider
from magicpaws.features.billing.stripe_provider import StripeProvider
from magicpaws.models.principal import Principal

logger = logging.getLogger("magicpaws")

SUBSCRIPTION_TYPE_LIVE_SUPPORT = "LIVE_SUPPORT"
STATUS_ACTIVE = "ACTIVE"
STATUS_CANCELLED = "CANCELLED"
STATUS_PAST_DUE = "PAST_DUE"


def billing_enabled() -> bool:
    """Check if billing is enabled (Stripe configured)."""
    return bool(settings.STRIPE_SECRET_KEY)


def get_provider() -> Optional[BillingProvider]:
    """Get billing provider if billing is enabled."""
    if not billing_enabled():
        return None
    return StripeProvider()


def require_provider() -> BillingProvider:
    provider = get_provider()
    if provider is None:
        raise ServiceUnavailableError("Billing is not configured", provider="stripe")
    return provider


def checkout_origin(origin: Optional[str]) -> str:
    return (origin or settings.PUBLIC_BASE_URL).rstrip("/")


def ensure_customer_for_user(principal: Principal) -> str:
    """
    Return the Stripe customer id for the user, creating and caching it once.

    Raises:
        ServiceUnavailableError: billing disabled
        BillingProviderError: Stripe call failed
    """
    provider = require_provider()

    with get_db_session() as session:
        existing = session.execute(
            select(billing_customers.c.stripe_customer_id).where(
                billing_customers.c.user_id == principal.id
            )
        ).first()
    if existing:
        return existing.stripe_customer_id

    stripe_customer_id = provider.ensure_customer(principal.id, principal.email, principal.name)

    try:
        with get_db_session() as session:
            session.execute(
                insert(billing_customers).values(
                    user_id=principal.id,
                    stripe_customer_id=stripe_customer_id,
                )
            )
    except IntegrityError:
        # Another request cached it first
        logger.info("billing.customer_cache_race", extra={"user_id": principal.id})
    return stripe_customer_id


def _latest_subscription(session, user_id: str):
    return session.execute(
        select(subscriptions)
        .where(subscriptions.c.user_id == user_id)
        .order_by(subscriptions.c.created_at.desc(), subscriptions.c.updated_at.desc())
        .limit(1)
    ).first()


def _active_subscription(session, user_id: str):
    return session.execute(
        select(subscriptions).where(
            and_(
                subscriptions.c.user_id == user_id,
                subscriptions.c.status == STATUS_ACTIVE,
            )
        )
    ).first()


def _is_current(row, now: Optional[datetime] = None) -> bool:
    if row is None or row.status != STATUS_ACTIVE:
        return False
    period_end = ensure_utc(row.current_period_end)
    return period_end is None or period_end > (now or utc_now())


def get_subscription_status(user_id: str) -> Dict[str, Any]:
    """
    Latest subscription for the user.

    Returns:
        {"has_subscription": bool, "subscription": dict | None}
    """
    with get_db_session() as session:
        row = _latest_subscription(session, user_id)
    if row is None:
        return {"has_subscription": False, "subscription": None}
    data = dict(row._mapping)
    for key in ("current_period_start", "current_period_end", "cancelled_at", "created_at", "updated_at"):
        data[key] = ensure_utc(data.get(key))
    return {"has_subscription": _is_current(row), "subscription": data}


def start_subscription_checkout(principal: Optional[Principal], origin: Optional[str] = None) -> str:
    """Start a monthly live-support subscription checkout."""
    if principal is None:
        raise UnauthenticatedError("Authentication required")

    with get_db_session() as session:
        active = _active_subscription(session, principal.id)
    if _is_current(active):
        raise ConflictError("You already have an active subscription", code="already_subscribed")

    provider = require_provider()
    customer_id = ensure_customer_for_user(principal)
    base = checkout_origin(origin)
    url = provider.create_subscription_checkout(
        customer_id=customer_id,
        product_name="Live Support Subscription",
        product_description="Monthly live support and Q&A access",
        unit_amount=settings.SUBSCRIPTION_PRICE_CENTS,
        currency=settings.CURRENCY,
        success_url=f"{base}/dashboard/settings?subscription=success",
        cancel_url=f"{base}/dashboard/settings?subscription=cancelled",
        metadata={"type": "subscription", "userId": principal.id, "subscriptionType": SUBSCRIPTION_TYPE_LIVE_SUPPORT},
    )
    logger.info("billing.subscription_checkout_started", extra={"user_id": principal.id})
    return url


def cancel_subscription(principal: Optional[Principal]) -> Dict[str, Any]:
    """
    Cancel the caller's ACTIVE subscription.

    Raises:
        NotFoundError: no active subscription
        BillingProviderError: Stripe refused the cancellation
    """
    if principal is None:
        raise UnauthenticatedError("Authentication required")

    with get_db_session() as session:
        active = _active_subscription(session, principal.id)
    if active is None:
        raise NotFoundError("No active subscription found")

    if active.stripe_subscription_id:
        require_provider().cancel_subscription(active.stripe_subscription_id)

    now = utc_now()
    with get_db_session() as session:
        session.execute(
            update(subscriptions)
            .where(subscriptions.c.id == active.id)
            .values(status=STATUS_CANCELLED, cancelled_at=now)
        )
    logger.info("billing.subscription_cancelled", extra={"user_id": principal.id, "subscription_id": active.id})
    return {"id": active.id, "status": STATUS_CANCELLED, "cancelled_at": now}


def activate_subscription(
    user_id: str,
    stripe_subscription_id: Optional[str],
    period_start: Optional[datetime] = None,
    period_end: Optional[datetime] = None,
) -> None:
    """
    Create or reactivate the user's subscription (idempotent).

    At most one ACTIVE row may exist per user, so an existing row for the
    same Stripe subscription, or else the user's latest row, is updated in
    place rather than inserting a second active one.
    """
    start = period_start or utc_now()
    end = period_end or start + timedelta(days=settings.SUBSCRIPTION_PERIOD_DAYS)
    values = {
        "status": STATUS_ACTIVE,
        "current_period_start": start,
        "current_period_end": end,
        "cancelled_at": None,
    }

    with get_db_session() as session:
        target = None
        if stripe_subscription_id:
            target = session.execute(
                select(subscriptions.c.id).where(subscriptions.c.stripe_subscription_id == stripe_subscription_id)
            ).first()
        if target is None:
            target = _active_subscription(session, user_id) or _latest_subscription(session, user_id)

        if target is not None:
            if stripe_subscription_id:
                values["stripe_subscription_id"] = stripe_subscription_id
            session.execute(update(subscriptions).where(subscriptions.c.id == target.id).values(**values))
        else:
            session.execute(
                insert(subscriptions).values(
                    user_id=user_id,
                    type=SUBSCRIPTION_TYPE_LIVE_SUPPORT,
                    stripe_subscription_id=stripe_subscription_id,
                    **values,
                )
            )
    logger.info("billing.subscription_activated", extra={"user_id": user_id, "stripe_subscription_id": stripe_subscription_id})


def set_subscription_status(
    stripe_subscription_id: str,
    status: str,
    *,
    period_start: Optional[datetime] = None,
    period_end: Optional[datetime] = None,
) -> bool:
    """Update a subscription found by its Stripe id. Returns False when unknown."""
    values: Dict[str, Any] = {"status": status}
    if status == STATUS_CANCELLED:
        values["cancelled_at"] = utc_now()
    if period_start is not None:
        values["current_period_start"] = period_start
    if period_end is not None:
        values["current_period_end"] = period_end

    with get_db_session() as session:
        row = session.execute(
            select(subscriptions.c.id, subscriptions.c.status, subscriptions.c.cancelled_at).where(
                subscriptions.c.stripe_subscription_id == stripe_subscription_id
            )
        ).first()
        if row is None:
            logger.warning("billing.subscription_unknown", extra={"stripe_subscription_id": stripe_subscription_id})
            return False
        if status == STATUS_CANCELLED and row.status == STATUS_CANCELLED and row.cancelled_at is not None:
            values.pop("cancelled_at")
        session.execute(update(subscriptions).where(subscriptions.c.id == row.id).values(**values))
    return True

