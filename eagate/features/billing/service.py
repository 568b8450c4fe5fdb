"""
Checkout orchestration.

Starts a hosted Stripe checkout for the caller. The checkout never grants
anything by itself: payment is recognized only when the verified
webhook arrives (see webhooks.py).
"""
import asyncio
import logging
from typing import Optional

from eagate.core.config import settings
from eagate.core.errors import BillingDisabledError, UpstreamError, UpstreamTimeoutError, ValidationError
from eagate.features.billing.provider import BillingProvider, BillingProviderError
from eagate.features.billing.stripe_provider import StripeProvider
from eagate.features.identity.service import is_valid_email, normalize_email
from eagate.models.identity import Identity


logger = logging.getLogger("eagate")


def billing_enabled() -> bool:
    """Check if billing is enabled (Stripe configured)."""
    return bool(settings.STRIPE_SECRET_KEY)


def get_provider() -> Optional[BillingProvider]:
    """Get billing provider if billing is enabled."""
    if not billing_enabled():
        return None
    return StripeProvider()


async def start_checkout(
    identity: Identity,
    success_url: str,
    cancel_url: str,
    email: Optional[str] = None,
) -> str:
    """
    Start a checkout session for the caller.

    Authenticated callers always pay under their own verified email.
    Anonymous callers must supply an email; their device token travels as
    client_reference_id so the completion event can link it.

    Returns:
        Checkout URL to redirect the caller to

    Raises:
        BillingDisabledError: STRIPE_SECRET_KEY not configured
        ValidationError: No usable email for an anonymous caller
        UpstreamError / UpstreamTimeoutError: Stripe failed or was too slow
    """
    provider = get_provider()
    if not provider:
        raise BillingDisabledError("Stripe is not configured. Set STRIPE_SECRET_KEY.")

    if identity.is_authenticated:
        customer_email = identity.email
        reference = None
    else:
        if not is_valid_email(email):
            raise ValidationError("A valid email is required to start checkout")
        customer_email = normalize_email(email)
        reference = identity.key

    try:
        url = await asyncio.wait_for(
            asyncio.to_thread(
                provider.create_checkout_session,
                success_url=success_url,
                cancel_url=cancel_url,
                customer_email=customer_email,
                client_reference_id=reference,
                metadata={"identity_kind": identity.kind.value},
            ),
            timeout=settings.OUTBOUND_TIMEOUT_SECONDS,
        )
    except asyncio.TimeoutError:
        raise UpstreamTimeoutError("Payment provider did not respond in time")
    except BillingProviderError as e:
        raise UpstreamError(str(e))

    logger.info(
        "checkout.started",
        extra={"identity_key": identity.storage_key, "identity_kind": identity.kind.value},
    )
    return url
