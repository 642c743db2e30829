# backend/app/services/payment_gateway.py
"""
Payment gateway adapter.

The booking core depends only on three gateway operations: authorize, capture
and refund. ``StripePaymentGateway`` implements them with manual-capture
PaymentIntents as destination charges (``transfer_data.destination`` plus
``application_fee_amount``), so captured funds are routed to the provider's
connected account minus the platform fee. Without a configured secret key the
gateway runs in mock mode and every call succeeds with ``*_mock_*`` references.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
import logging
from typing import Any, Dict, Optional, Protocol, runtime_checkable

import stripe

from ..core.config import settings
from ..core.exceptions import GatewayFailureException

logger = logging.getLogger(__name__)

CAPTURE_SUCCEEDED = "succeeded"


def to_cents(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@runtime_checkable
class PaymentGateway(Protocol):
    def authorize(
        self,
        amount: Decimal,
        customer_payment_method: Optional[str],
        provider_account: Optional[str],
        platform_fee_amount: Decimal,
        metadata: Optional[Dict[str, str]] = None,
    ) -> str:
        """Place a hold for ``amount`` and return the payment reference."""

    def capture(self, payment_reference: str) -> str:
        """Capture a held payment; returns the gateway status."""

    def refund(self, payment_reference: str, amount: Decimal) -> str:
        """Refund ``amount`` of a captured payment; returns the refund reference."""


class StripePaymentGateway:
    """Stripe Connect implementation of :class:`PaymentGateway`."""

    def __init__(self, api_key: Optional[str] = None, currency: Optional[str] = None):
        self.currency = currency or settings.stripe_currency
        key = api_key if api_key is not None else settings.stripe_api_key
        self.stripe_configured = False
        if key:
            stripe.api_key = key
            stripe.max_network_retries = 1
            self.stripe_configured = True
            logger.info("Stripe payment gateway configured")
        else:
            logger.warning("Stripe secret key not configured - gateway will operate in mock mode")

    def authorize(
        self,
        amount: Decimal,
        customer_payment_method: Optional[str],
        provider_account: Optional[str],
        platform_fee_amount: Decimal,
        metadata: Optional[Dict[str, str]] = None,
    ) -> str:
        meta = dict(metadata or {})
        amount_cents = to_cents(amount)
        if amount_cents <= 0:
            raise GatewayFailureException(
                "Authorization amount must be positive", operation="authorize"
            )
        if not self.stripe_configured:
            reference = f"pi_mock_{meta.get('charge_type', 'booking')}_{meta.get('booking_id', amount_cents)}"
            logger.info("Mock authorization %s for %s cents", reference, amount_cents)
            return reference
        if not customer_payment_method:
            raise GatewayFailureException(
                "Customer has no payment method on file", operation="authorize"
            )

        kwargs: Dict[str, Any] = {
            "amount": amount_cents,
            "currency": self.currency,
            "payment_method": customer_payment_method,
            "capture_method": "manual",
            "confirm": True,
            "off_session": True,
            "metadata": {**meta, "platform": "cleanconnect"},
        }
        if provider_account:
            kwargs["transfer_data"] = {"destination": provider_account}
            kwargs["application_fee_amount"] = to_cents(platform_fee_amount)
        idempotency_key = meta.get("idempotency_key")
        if idempotency_key:
            kwargs["idempotency_key"] = idempotency_key

        try:
            intent = stripe.PaymentIntent.create(**kwargs)
        except stripe.StripeError as e:
            logger.error(f"Stripe error creating authorization: {str(e)}")
            raise GatewayFailureException(
                f"Failed to authorize payment: {str(e)}", operation="authorize"
            ) from e
        if intent.status not in {"requires_capture", "succeeded", "processing"}:
            raise GatewayFailureException(
                f"Authorization not completed (status {intent.status})",
                operation="authorize",
                details={"payment_reference": intent.id},
            )
        return str(intent.id)

    def capture(self, payment_reference: str) -> str:
        if not self.stripe_configured:
            return CAPTURE_SUCCEEDED
        try:
            intent = stripe.PaymentIntent.capture(payment_reference)
        except stripe.StripeError as e:
            logger.error(f"Stripe error capturing payment intent: {str(e)}")
            raise GatewayFailureException(
                f"Failed to capture payment: {str(e)}",
                operation="capture",
                details={"payment_reference": payment_reference},
            ) from e
        return str(intent.status)

    def refund(self, payment_reference: str, amount: Decimal) -> str:
        amount_cents = to_cents(amount)
        if not self.stripe_configured:
            return f"re_mock_{payment_reference}_{amount_cents}"
        try:
            refund = stripe.Refund.create(
                payment_intent=payment_reference,
                amount=amount_cents,
                reverse_transfer=True,
                refund_application_fee=True,
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe error creating refund: {str(e)}")
            raise GatewayFailureException(
                f"Failed to refund payment: {str(e)}",
                operation="refund",
                details={"payment_reference": payment_reference},
            ) from e
        return str(refund.id)


_gateway: Optional[PaymentGateway] = None


def get_payment_gateway() -> PaymentGateway:
    """Process-wide gateway instance (FastAPI dependency and Celery tasks)."""
    global _gateway
    if _gateway is None:
        _gateway = StripePaymentGateway()
    return _gateway
