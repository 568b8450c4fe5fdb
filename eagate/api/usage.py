"""
Usage API routes.

- GET  /usage: Caller's count, remaining free requests and payment status
- POST /usage/reset: Authenticated caller resets their own counter
- POST /admin/usage/reset: Operator resets any counter (audited)
"""
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from starlette.concurrency import run_in_threadpool

from eagate.core.admin_auth import AdminActor, require_admin
from eagate.features.gate.service import evaluate
from eagate.features.identity.service import get_identity
from eagate.features.usage.service import reset_usage
from eagate.models.identity import Identity, IdentityKind


router = APIRouter(tags=["usage"])


class UsageResponse(BaseModel):
    identity_kind: str
    count: int
    limit: int
    remaining_free: int
    has_paid: bool


class AdminResetRequest(BaseModel):
    kind: IdentityKind
    key: str = Field(..., min_length=1, max_length=320)


def _usage_view(identity: Identity) -> dict:
    decision = evaluate(identity)
    return {
        "identity_kind": identity.kind.value,
        "count": decision.count,
        "limit": decision.limit,
        "remaining_free": decision.remaining_free,
        "has_paid": decision.has_paid,
    }


@router.get("/usage", response_model=UsageResponse)
async def get_usage_status(identity: Identity = Depends(get_identity)):
    return await run_in_threadpool(_usage_view, identity)


@router.post("/usage/reset", response_model=UsageResponse)
async def reset_own_usage(identity: Identity = Depends(get_identity)):
    """Anonymous callers get 403; their counter is not theirs to reset."""
    await run_in_threadpool(reset_usage, identity, requested_by=identity)
    return await run_in_threadpool(_usage_view, identity)


@router.post("/admin/usage/reset", response_model=UsageResponse)
async def admin_reset_usage(request: AdminResetRequest, actor: AdminActor = Depends(require_admin)):
    key = request.key.strip()
    if request.kind == IdentityKind.AUTHENTICATED:
        key = key.lower()
    target = Identity(kind=request.kind, key=key)

    await run_in_threadpool(reset_usage, target, admin=actor)
    return await run_in_threadpool(_usage_view, target)
