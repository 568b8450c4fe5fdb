"""
Payment webhook ingestion.

1. Verify signature (reject, no mutation)
2. Normalize event (malformed bodies never reach the store)
3. Discard completed/canceled events without a customer email (ack)
4. Skip events already in the dedup log (ack)
5. Compare-and-set the entitlement; older events are logged, not applied (ack)
6. Record the event as processed in the same transaction

Safe under at-least-once, concurrent and out-of-order delivery.
"""
import logging
import re
from typing import Optional

from sqlalchemy import select, insert
from sqlalchemy.exc import IntegrityError

from eagate.core.database import get_db_session, payment_events
from eagate.core.errors import BillingDisabledError, StoreUnavailableError
from eagate.features.billing.provider import BillingProvider, BillingProviderError
from eagate.features.billing.stripe_provider import StripeProvider, parse_event
from eagate.features.entitlements.service import (
    ConcurrentInsertError,
    link_identity,
    upsert_entitlement,
)
from eagate.models.entitlement import UpsertOutcome
from eagate.models.payment_event import IngestOutcome, IngestResult, PaymentEvent, PaymentEventType


logger = logging.getLogger("eagate")

_APPLY_ATTEMPTS = 3
_ANON_REFERENCE_RE = re.compile(r"^[A-Za-z0-9_-]{8,128}$")


def get_webhook_provider() -> BillingProvider:
    return StripeProvider()


def _record_event(session, event: PaymentEvent, outcome: IngestOutcome) -> None:
    session.execute(
        insert(payment_events).values(
            event_id=event.id,
            provider_type=event.provider_type,
            event_type=event.type.value,
            customer_email=event.customer_email,
            payload_digest=event.payload_digest,
            event_created=event.created,
            received_at=event.received_at,
            processed=True,
            outcome=outcome.value,
            processed_at=event.received_at,
        )
    )


def _apply(event: PaymentEvent) -> IngestOutcome:
    """One transaction: dedup check, entitlement CAS, identity link, dedup record."""
    try:
        with get_db_session() as session:
            # Rows are only ever written once fully processed
            seen = session.execute(
                select(payment_events.c.event_id).where(payment_events.c.event_id == event.id)
            ).first()
            if seen is not None:
                return IngestOutcome.DUPLICATE

            if event.type == PaymentEventType.OTHER:
                outcome = IngestOutcome.IGNORED
            else:
                upsert = upsert_entitlement(
                    event.customer_email,
                    event.grants_payment,
                    event.created,
                    event.id,
                    session=session,
                )
                outcome = IngestOutcome.APPLIED if upsert == UpsertOutcome.APPLIED else IngestOutcome.STALE

                reference = event.client_reference_id
                if event.grants_payment and reference and _ANON_REFERENCE_RE.match(reference):
                    link_identity(f"anon:{reference}", event.customer_email, event.id, session=session)

            _record_event(session, event, outcome)
    except IntegrityError:
        # A concurrent delivery of the same event id committed first;
        # everything this attempt wrote has been rolled back.
        return IngestOutcome.DUPLICATE

    return outcome


def ingest_webhook(
    raw_body: bytes,
    signature_header: Optional[str],
    provider: Optional[BillingProvider] = None,
) -> IngestResult:
    """
    Verify and idempotently apply a payment-provider callback.

    Returns:
        IngestResult for every acknowledged outcome (applied, duplicate,
        stale, missing_identity, ignored)

    Raises:
        SignatureInvalidError: Signature missing or wrong (no mutation)
        MalformedEventError: Signed body is not a usable event (no mutation)
        BillingDisabledError: Webhook secret not configured
        StoreUnavailableError: Database unavailable (provider should retry)
    """
    provider = provider or get_webhook_provider()
    try:
        payload = provider.verify_webhook(raw_body, signature_header)
    except BillingProviderError as e:
        raise BillingDisabledError(str(e))

    event = parse_event(payload, raw_body)
    log_extra = {
        "event_id": event.id,
        "event_type": event.provider_type,
        "payload_digest": event.payload_digest,
    }

    if event.type != PaymentEventType.OTHER and not event.customer_email:
        logger.warning(
            "webhook.missing_identity",
            extra={**log_extra, "outcome": IngestOutcome.MISSING_IDENTITY.value},
        )
        return IngestResult(event_id=event.id, outcome=IngestOutcome.MISSING_IDENTITY, event_type=event.type)

    for attempt in range(1, _APPLY_ATTEMPTS + 1):
        try:
            outcome = _apply(event)
            break
        except ConcurrentInsertError:
            logger.info("webhook.retry", extra={**log_extra, "reason": f"concurrent insert, attempt {attempt}"})
    else:
        raise StoreUnavailableError(f"Could not settle event {event.id}")

    level = logging.WARNING if outcome == IngestOutcome.STALE else logging.INFO
    logger.log(
        level,
        f"webhook.{outcome.value}",
        extra={
            **log_extra,
            "outcome": outcome.value,
            "identity_key": event.customer_email,
            "has_paid": event.grants_payment if outcome == IngestOutcome.APPLIED else None,
        },
    )
    return IngestResult(
        event_id=event.id,
        outcome=outcome,
        event_type=event.type,
        identity_key=event.customer_email,
    )
