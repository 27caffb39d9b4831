"""
Tier purchase intent and fulfilment.

Starting a checkout is refused for tiers the caller already owns.
Fulfilment is driven by at-least-once gateway signals, so it must create
exactly one tier_purchases row per (user, tier); the unique constraint on
that pair decides, and a violation means the purchase is already recorded.
"""

import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Optional

from sqlalchemy import insert
from sqlalchemy.exc import IntegrityError

from magicpaws.core.config import settings
from magicpaws.core.database import get_db_session, tier_purchases
from magicpaws.core.errors import UnauthenticatedError
from magicpaws.core.metrics import tier_purchases_total
from magicpaws.features.billing import service as billing_service
from magicpaws.features.content.service import get_active_tier
from magicpaws.features.entitlements.service import ensure_not_owned, has_tier_purchase
from magicpaws.models.principal import Principal

logger = logging.getLogger("magicpaws")

PURCHASE_TYPE_TIER = "tier_purchase"


def to_minor_units(amount) -> int:
    """Convert a currency amount to integer cents, rounding half up."""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def tier_checkout_metadata(tier_id: str, tier_slug: str, user_id: str) -> Dict[str, str]:
    return {
        "type": PURCHASE_TYPE_TIER,
        "tierId": tier_id,
        "tierSlug": tier_slug,
        "userId": user_id,
    }


def start_tier_checkout(principal: Optional[Principal], slug: str, origin: Optional[str] = None) -> str:
    """
    Create a checkout for a tier and return its redirect URL.

    Raises:
        UnauthenticatedError: anonymous caller
        NotFoundError: tier missing or inactive
        ConflictError (already_owned): caller owns the tier; no checkout is created
        ServiceUnavailableError / BillingProviderError: gateway unavailable or failed
    """
    if principal is None:
        raise UnauthenticatedError("Authentication required")

    tier = get_active_tier(slug)
    ensure_not_owned(principal.id, tier.id)

    provider = billing_service.require_provider()
    customer_id = billing_service.ensure_customer_for_user(principal)
    base = billing_service.checkout_origin(origin)

    url = provider.create_payment_checkout(
        customer_id=customer_id,
        product_name=f"{tier.name} Training Tier",
        product_description=tier.description or f"Access to {tier.name} training content",
        unit_amount=to_minor_units(tier.price),
        currency=settings.CURRENCY,
        success_url=f"{base}/dashboard/training/{tier.slug}?purchase=success",
        cancel_url=f"{base}/dashboard/training?purchase=cancelled",
        metadata=tier_checkout_metadata(tier.id, tier.slug, principal.id),
    )
    logger.info("purchase.checkout_started", extra={"user_id": principal.id, "tier_id": tier.id})
    return url


def fulfill_tier_purchase(
    user_id: str,
    tier_id: str,
    amount: Optional[Decimal] = None,
    payment_ref: Optional[str] = None,
) -> bool:
    """
    Record ownership of a tier.

    Returns:
        True when a row was created, False when the pair was already owned.
    """
    try:
        with get_db_session() as session:
            session.execute(
                insert(tier_purchases).values(
                    user_id=user_id,
                    tier_id=tier_id,
                    amount=amount,
                    stripe_payment_id=payment_ref,
                )
            )
    except IntegrityError:
        if not has_tier_purchase(user_id, tier_id):
            # Not the (user, tier) uniqueness: a missing user or tier
            raise
        tier_purchases_total.inc(labels={"result": "duplicate"})
        logger.info("purchase.already_fulfilled", extra={"user_id": user_id, "tier_id": tier_id})
        return False

    tier_purchases_total.inc(labels={"result": "created"})
    logger.info("purchase.fulfilled", extra={"user_id": user_id, "tier_id": tier_id, "payment_ref": payment_ref})
    return True
