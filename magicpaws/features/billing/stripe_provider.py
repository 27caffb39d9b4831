"""
Stripe billing provider implementation.

Implements BillingProvider protocol using the Stripe API.
Network failures and timeouts are raised as transient BillingProviderError.
"""
import json
import logging
from typing import Dict, Any, Optional

import stripe

from magicpaws.core.config import settings
from magicpaws.features.billing.provider import (
    BillingProviderError,
    BillingWebhookError,
    BillingWebhookEvent,
)

logger = logging.getLogger("magicpaws")


def _provider_error(action: str, exc: Exception) -> BillingProviderError:
    transient = isinstance(exc, (stripe.APIConnectionError, stripe.RateLimitError))
    logger.warning(
        "stripe.call_failed",
        extra={"action": action, "transient": transient, "error_type": type(exc).__name__},
    )
    return BillingProviderError(f"Stripe {action} failed: {exc}", transient=transient)


class StripeProvider:
    """Stripe implementation of BillingProvider protocol."""

    def __init__(self, secret_key: Optional[str] = None, webhook_secret: Optional[str] = None, timeout: Optional[int] = None):
        """
        Initialize Stripe provider.

        Args:
            secret_key: Stripe secret key (defaults to STRIPE_SECRET_KEY)
            webhook_secret: Stripe webhook secret (defaults to STRIPE_WEBHOOK_SECRET)
            timeout: per-request timeout in seconds (defaults to STRIPE_TIMEOUT_SECONDS)
        """
        self.secret_key = secret_key or settings.STRIPE_SECRET_KEY
        self.webhook_secret = webhook_secret or settings.STRIPE_WEBHOOK_SECRET
        self.timeout = timeout or settings.STRIPE_TIMEOUT_SECONDS

        if not self.secret_key:
            raise BillingProviderError("STRIPE_SECRET_KEY not configured")

        stripe.api_key = self.secret_key
        stripe.default_http_client = stripe.RequestsClient(timeout=self.timeout)

    def ensure_customer(self, user_id: str, email: Optional[str] = None, name: Optional[str] = None) -> str:
        """Reuse the customer registered under this email, or create one."""
        try:
            if email:
                customers = stripe.Customer.list(email=email, limit=1)
                if customers.data:
                    return customers.data[0].id

            customer_data: Dict[str, Any] = {"metadata": {"user_id": user_id}}
            if email:
                customer_data["email"] = email
            if name:
                customer_data["name"] = name

            customer = stripe.Customer.create(**customer_data)
            return customer.id
        except stripe.StripeError as e:
            raise _provider_error("customer lookup", e)

    def create_payment_checkout(
        self,
        customer_id: str,
        product_name: str,
        product_description: str,
        unit_amount: int,
        currency: str,
        success_url: str,
        cancel_url: str,
        metadata: Dict[str, str],
    ) -> str:
        try:
            session = stripe.checkout.Session.create(
                customer=customer_id,
                payment_method_types=["card"],
                line_items=[
                    {
                        "price_data": {
                            "currency": currency,
                            "product_data": {"name": product_name, "description": product_description},
                            "unit_amount": unit_amount,
                        },
                        "quantity": 1,
                    }
                ],
                mode="payment",
                success_url=success_url,
                cancel_url=cancel_url,
                metadata=metadata,
            )
            return session.url
        except stripe.StripeError as e:
            raise _provider_error("payment checkout", e)

    def create_subscription_checkout(
        self,
        customer_id: str,
        product_name: str,
        product_description: str,
        unit_amount: int,
        currency: str,
        success_url: str,
        cancel_url: str,
        metadata: Dict[str, str],
    ) -> str:
        try:
            session = stripe.checkout.Session.create(
                customer=customer_id,
                payment_method_types=["card"],
                line_items=[
                    {
                        "price_data": {
                            "currency": currency,
                            "product_data": {"name": product_name, "description": product_description},
                            "unit_amount": unit_amount,
                            "recurring": {"interval": "month"},
                        },
                        "quantity": 1,
                    }
                ],
                mode="subscription",
                success_url=success_url,
                cancel_url=cancel_url,
                metadata=metadata,
                subscription_data={"metadata": metadata},
            )
            return session.url
        except stripe.StripeError as e:
            raise _provider_error("subscription checkout", e)

    def cancel_subscription(self, subscription_id: str) -> None:
        try:
            stripe.Subscription.cancel(subscription_id)
        except stripe.StripeError as e:
            raise _provider_error("subscription cancel", e)

    def handle_webhook(self, headers: Dict[str, str], body: bytes) -> BillingWebhookEvent:
        """Verify Stripe webhook signature and parse event."""
        if not self.webhook_secret:
            raise BillingWebhookError("STRIPE_WEBHOOK_SECRET not configured")

        sig_header = headers.get("stripe-signature") or headers.get("Stripe-Signature")
        if not sig_header:
            raise BillingWebhookError("Missing stripe-signature header")

        try:
            stripe.Webhook.construct_event(body, sig_header, self.webhook_secret)
        except ValueError as e:
            raise BillingWebhookError(f"Invalid payload: {e}")
        except stripe.SignatureVerificationError as e:
            raise BillingWebhookError(f"Invalid signature: {e}")

        # Signature is verified; work on the plain JSON body
        return parse_event(json.loads(body))


def parse_event(event: Dict[str, Any]) -> BillingWebhookEvent:
    """Normalize a raw Stripe event payload."""
    try:
        data = event.get("data", {}).get("object", {}) or {}
        return BillingWebhookEvent(
            event_id=event["id"],
            event_type=event["type"],
            data=data,
            metadata=data.get("metadata") or {},
        )
    except (KeyError, AttributeError) as e:
        raise BillingWebhookError(f"Malformed event: {e}")
