"""
Stripe billing provider implementation.

Implements BillingProvider protocol using the Stripe API.
Handles webhook signature verification and event normalization.
"""
import hashlib
import json
from datetime import datetime, timezone
from typing import Dict, Any, Optional

import stripe

from eagate.core.config import settings
from eagate.core.errors import MalformedEventError, SignatureInvalidError
from eagate.features.billing.provider import BillingProviderError
from eagate.features.identity.service import is_valid_email, normalize_email
from eagate.models.payment_event import PaymentEvent, PaymentEventType


# Provider event types mapped to the normalized variant
COMPLETED_EVENT_TYPES = frozenset({
    "checkout.session.completed",
    "checkout.session.async_payment_succeeded",
})
CANCELED_EVENT_TYPES = frozenset({
    "customer.subscription.deleted",
    "charge.refunded",
    "checkout.session.async_payment_failed",
})


class StripeProvider:
    """Stripe implementation of BillingProvider protocol."""

    def __init__(
        self,
        secret_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        tolerance_seconds: Optional[int] = None,
    ):
        """
        Args:
            secret_key: Stripe secret key (defaults to STRIPE_SECRET_KEY)
            webhook_secret: Stripe webhook secret (defaults to STRIPE_WEBHOOK_SECRET)
            tolerance_seconds: Max signature age (defaults to WEBHOOK_TOLERANCE_SECONDS)
        """
        self.secret_key = secret_key or settings.STRIPE_SECRET_KEY
        self.webhook_secret = webhook_secret or settings.STRIPE_WEBHOOK_SECRET
        self.tolerance_seconds = (
            tolerance_seconds if tolerance_seconds is not None else settings.WEBHOOK_TOLERANCE_SECONDS
        )

    def create_checkout_session(
        self,
        success_url: str,
        cancel_url: str,
        customer_email: Optional[str] = None,
        client_reference_id: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None
    ) -> str:
        """Create Stripe checkout session."""
        if not self.secret_key:
            raise BillingProviderError("STRIPE_SECRET_KEY not configured")
        if not settings.STRIPE_PRICE_ID:
            raise BillingProviderError("STRIPE_PRICE_ID not configured")

        params: Dict[str, Any] = {
            "api_key": self.secret_key,
            "mode": settings.STRIPE_CHECKOUT_MODE,
            "line_items": [{"price": settings.STRIPE_PRICE_ID, "quantity": 1}],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata or {},
        }
        if customer_email:
            params["customer_email"] = customer_email
            # Carry the email onto the objects later cancel/refund events describe
            if settings.STRIPE_CHECKOUT_MODE == "subscription":
                params["subscription_data"] = {"metadata": {"email": customer_email}}
            else:
                params["payment_intent_data"] = {"receipt_email": customer_email}
        if client_reference_id:
            params["client_reference_id"] = client_reference_id

        try:
            session = stripe.checkout.Session.create(**params)
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe checkout session creation failed: {e}")
        return session.url

    def verify_webhook(self, body: bytes, signature_header: Optional[str]) -> Dict[str, Any]:
        """Verify Stripe webhook signature and decode the event."""
        if not self.webhook_secret:
            raise BillingProviderError("STRIPE_WEBHOOK_SECRET not configured")
        if not signature_header:
            raise SignatureInvalidError("Missing Stripe-Signature header")

        try:
            payload = body.decode("utf-8")
        except UnicodeDecodeError:
            raise SignatureInvalidError("Webhook body is not valid UTF-8")

        try:
            stripe.WebhookSignature.verify_header(
                payload, signature_header, self.webhook_secret, self.tolerance_seconds
            )
        except stripe.SignatureVerificationError as e:
            raise SignatureInvalidError(f"Invalid signature: {e}")

        try:
            event = json.loads(payload)
        except ValueError as e:
            raise MalformedEventError(f"Invalid payload: {e}")
        if not isinstance(event, dict):
            raise MalformedEventError("Event body must be a JSON object")
        return event


def classify_event_type(provider_type: str) -> PaymentEventType:
    if provider_type in COMPLETED_EVENT_TYPES:
        return PaymentEventType.COMPLETED
    if provider_type in CANCELED_EVENT_TYPES:
        return PaymentEventType.CANCELED
    return PaymentEventType.OTHER


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _extract_email(data: Dict[str, Any]) -> Optional[str]:
    """Customer email from the places Stripe objects carry it."""
    candidates = [
        _as_dict(data.get("customer_details")).get("email"),
        data.get("customer_email"),
        data.get("receipt_email"),
        _as_dict(data.get("billing_details")).get("email"),
        _as_dict(data.get("metadata")).get("email"),
    ]
    for candidate in candidates:
        if isinstance(candidate, str) and is_valid_email(candidate):
            return normalize_email(candidate)
    return None


def parse_event(event: Dict[str, Any], body: bytes, received_at: Optional[datetime] = None) -> PaymentEvent:
    """
    Normalize a verified Stripe event.

    Raises:
        MalformedEventError: id, type or created missing or mistyped
    """
    event_id = event.get("id")
    provider_type = event.get("type")
    created = event.get("created")

    if not isinstance(event_id, str) or not event_id:
        raise MalformedEventError("Event is missing 'id'")
    if not isinstance(provider_type, str) or not provider_type:
        raise MalformedEventError("Event is missing 'type'")
    if isinstance(created, bool) or not isinstance(created, int) or created < 0:
        raise MalformedEventError("Event is missing a valid 'created' timestamp")

    envelope = event.get("data") or {}
    data = envelope.get("object") if isinstance(envelope, dict) else None
    if not isinstance(data, dict):
        raise MalformedEventError("Event data.object must be an object")

    reference = data.get("client_reference_id")

    return PaymentEvent(
        id=event_id,
        provider_type=provider_type,
        type=classify_event_type(provider_type),
        customer_email=_extract_email(data),
        client_reference_id=reference if isinstance(reference, str) and reference else None,
        created=created,
        payload_digest=hashlib.sha256(body).hexdigest(),
        received_at=received_at or datetime.now(timezone.utc),
    )
