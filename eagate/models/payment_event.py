"""
eagate/models/payment_event.py

PaymentEvent: a verified payment-provider callback, normalized.

Provider payloads vary in shape; they are reduced to one of three
event types so ingestion can branch exhaustively.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict


class PaymentEventType(str, Enum):
    COMPLETED = "completed"
    CANCELED = "canceled"
    OTHER = "other"


class IngestOutcome(str, Enum):
    """Acknowledged webhook outcomes. None of these are errors."""
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    STALE = "stale"
    MISSING_IDENTITY = "missing_identity"
    IGNORED = "ignored"


class PaymentEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    provider_type: str  # raw provider event type, e.g. checkout.session.completed
    type: PaymentEventType
    customer_email: Optional[str] = None
    client_reference_id: Optional[str] = None
    created: int  # provider event time, epoch seconds
    payload_digest: str
    received_at: datetime
    processed: bool = False

    @property
    def grants_payment(self) -> bool:
        return self.type == PaymentEventType.COMPLETED


class IngestResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    event_id: str
    outcome: IngestOutcome
    event_type: PaymentEventType
    identity_key: Optional[str] = None
