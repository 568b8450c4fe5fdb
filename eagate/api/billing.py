"""
Billing API routes.

- POST /checkout-session: Start a hosted Stripe checkout
- POST /webhook: Receive Stripe events (signature-verified, idempotent)
"""
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from pydantic import BaseModel, Field
from starlette.concurrency import run_in_threadpool

from eagate.features.billing.service import start_checkout
from eagate.features.billing.webhooks import ingest_webhook
from eagate.features.identity.service import get_identity
from eagate.models.identity import Identity


router = APIRouter(tags=["billing"])


class CheckoutRequest(BaseModel):
    """Request to create checkout session."""
    success_url: str = Field(..., min_length=1, max_length=2048)
    cancel_url: str = Field(..., min_length=1, max_length=2048)
    email: Optional[str] = Field(None, max_length=320)  # required for anonymous callers


class CheckoutResponse(BaseModel):
    """Response with checkout URL."""
    url: str


class WebhookAck(BaseModel):
    received: bool
    event_id: str
    outcome: str


@router.post("/checkout-session", response_model=CheckoutResponse)
async def create_checkout(request: CheckoutRequest, identity: Identity = Depends(get_identity)):
    """
    Create Stripe checkout session.

    Returns:
        {"url": "https://checkout.stripe.com/..."}

    Errors:
        400: Anonymous caller without a valid email
        401: No identity
        502/504: Stripe failed or timed out
        503: Billing disabled (STRIPE_SECRET_KEY not set)
    """
    url = await start_checkout(
        identity,
        success_url=request.success_url,
        cancel_url=request.cancel_url,
        email=request.email,
    )
    return {"url": url}


@router.post("/webhook", response_model=WebhookAck)
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None),
):
    """
    Handle Stripe webhook events.

    Every verified event is acknowledged with 200, including duplicates,
    stale events and events without a customer email, so Stripe stops
    retrying them.

    Errors:
        400: Invalid signature or malformed payload (nothing written)
        503: Webhook secret not configured, or store unavailable (Stripe retries)
    """
    # Raw body is required for signature verification
    body = await request.body()
    result = await run_in_threadpool(ingest_webhook, body, stripe_signature)
    return {"received": True, "event_id": result.event_id, "outcome": result.outcome.value}
