"""
eagate/models/entitlement.py

EntitlementRecord: authoritative paid flag for an email.

updated_at is the payment provider's event time, not the wall clock
of the write. It is the ordering key for out-of-order deliveries.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict


class UpsertOutcome(str, Enum):
    APPLIED = "applied"
    STALE_REJECTED = "stale_rejected"


class EntitlementRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    identity_key: Optional[str]
    has_paid: bool = False
    updated_at: Optional[datetime] = None
    source_event_id: Optional[str] = None

    @classmethod
    def unpaid(cls, identity_key: Optional[str] = None) -> "EntitlementRecord":
        return cls(identity_key=identity_key, has_paid=False)

    @staticmethod
    def from_epoch(ts: Optional[int]) -> Optional[datetime]:
        if ts is None:
            return None
        return datetime.fromtimestamp(ts, timezone.utc)
