"""Free-tier gate: pure authorization rule for generation requests."""
from __future__ import annotations

from eagate.models.entitlement import EntitlementRecord
from eagate.models.gate import GateDecision, GateStatus
from eagate.models.identity import Identity
from eagate.models.usage import UsageRecord

DEFAULT_FREE_LIMIT = 3
LIMIT_REACHED = "limit_reached"


def decide(
    identity: Identity,
    usage: UsageRecord,
    entitlement: EntitlementRecord,
    free_limit: int = DEFAULT_FREE_LIMIT,
) -> GateDecision:
    """Deny iff the caller has not paid and has used up the free tier.

    No clock, no store: everything the rule needs is passed in.
    """
    if usage.identity != identity:
        raise ValueError("usage record belongs to a different identity")

    if not entitlement.has_paid and usage.count >= free_limit:
        return GateDecision(
            status=GateStatus.DENY,
            reason=LIMIT_REACHED,
            count=usage.count,
            limit=free_limit,
            has_paid=False,
        )

    return GateDecision(
        status=GateStatus.ALLOW,
        count=usage.count,
        limit=free_limit,
        has_paid=entitlement.has_paid,
    )
