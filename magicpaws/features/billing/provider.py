"""
Billing provider protocol.

Defines the interface the commerce gateway must offer. Business logic in
service.py only talks to this protocol, so the Stripe implementation can be
replaced (or mocked in tests) without touching it.
"""
from typing import Protocol, Dict, Any, Optional
from dataclasses import dataclass, field

from magicpaws.core.errors import AppError, UpstreamError


@dataclass
class BillingWebhookEvent:
    """A verified gateway event, reduced to what fulfilment needs."""
    event_id: str
    event_type: str
    data: Dict[str, Any]
    metadata: Dict[str, Any] = field(default_factory=dict)


class BillingProvider(Protocol):
    """
    Protocol for billing providers.

    Implementations must handle:
    - Customer lookup/creation
    - One-off and recurring checkout session creation
    - Subscription cancellation
    - Webhook signature verification and parsing
    """

    def ensure_customer(self, user_id: str, email: Optional[str] = None, name: Optional[str] = None) -> str:
        """Return the provider customer id for the user, creating one if needed."""
        ...

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
        """
        Create a one-off payment checkout.

        Args:
            unit_amount: price in minor currency units (cents)
            metadata: echoed back on the completion event

        Returns:
            Checkout URL to redirect the customer to
        """
        ...

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
        """Create a monthly recurring checkout. Returns the checkout URL."""
        ...

    def cancel_subscription(self, subscription_id: str) -> None:
        ...

    def handle_webhook(self, headers: Dict[str, str], body: bytes) -> BillingWebhookEvent:
        """
        Verify webhook signature and parse event.

        Raises:
            BillingWebhookError: If signature invalid or payload malformed
        """
        ...


class BillingProviderError(UpstreamError):
    """The payment provider rejected a call or could not be reached."""

    def __init__(self, message: str, *, transient: bool = False, **kwargs):
        super().__init__(message, provider="stripe", transient=transient, **kwargs)


class BillingWebhookError(AppError):
    """Webhook could not be verified or parsed."""
    code = "invalid_webhook"
    status_code = 400
