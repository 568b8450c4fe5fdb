"""
Generation gate.

Reads the caller's usage and entitlement, applies the pure policy, and
records usage once a generation has succeeded. No transaction stays open
between authorize() and record_success(); the LLM call happens in between.
"""
import logging

from eagate.core.config import settings
from eagate.core.errors import LimitReachedError
from eagate.features.entitlements.service import resolve_entitlement
from eagate.features.gate.policy import decide
from eagate.features.usage.service import get_usage, increment_usage
from eagate.models.gate import GateDecision
from eagate.models.identity import Identity

logger = logging.getLogger("eagate")


def evaluate(identity: Identity) -> GateDecision:
    """Current decision for the identity, without enforcing it."""
    usage = get_usage(identity)
    entitlement = resolve_entitlement(identity)
    return decide(identity, usage, entitlement, free_limit=settings.FREE_LIMIT)


def authorize(identity: Identity) -> GateDecision:
    """
    Raises:
        LimitReachedError: free tier used up and no payment on record
    """
    decision = evaluate(identity)
    extra = {
        "identity_key": identity.storage_key,
        "identity_kind": identity.kind.value,
        "count": decision.count,
        "has_paid": decision.has_paid,
    }
    if not decision.allowed:
        logger.info("gate.deny", extra={**extra, "reason": decision.reason})
        raise LimitReachedError(
            f"You've used your {decision.limit} free requests. Complete checkout to continue.",
            count=decision.count,
            limit=decision.limit,
        )

    logger.info("gate.allow", extra=extra)
    return decision


def record_success(identity: Identity, decision: GateDecision) -> GateDecision:
    """Count a successful generation and return the post-increment view."""
    new_count = increment_usage(identity)
    return decision.model_copy(update={"count": new_count})
