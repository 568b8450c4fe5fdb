"""
Admin authentication for operator actions (usage resets).

Supports hybrid authentication:
- Clerk JWT with public_metadata.role == "admin"
- X-Admin-Key: shared secret

Auth modes (ADMIN_AUTH_MODE):
- "clerk": Only Clerk JWT allowed
- "legacy": Only X-Admin-Key allowed
- "hybrid": Both allowed (default)
"""
import hashlib
import hmac
from typing import Optional, Literal
from dataclasses import dataclass

import jwt
from fastapi import Request

from eagate.core.config import settings
from eagate.core.errors import AppError, UnauthorizedError


@dataclass
class AdminActor:
    """Represents an authenticated admin actor."""
    actor_type: Literal["clerk", "legacy_key"]
    actor_id: str  # Clerk user ID or "legacy:<hash>"
    actor_email: Optional[str] = None
    auth_mechanism: Literal["clerk_jwt", "x_admin_key"] = "clerk_jwt"


def verify_admin_key(request: Request) -> Optional[AdminActor]:
    """
    Verify X-Admin-Key header.
    Returns AdminActor if valid, None if not present/invalid.
    """
    expected_key = settings.ADMIN_KEY
    if not expected_key:
        return None

    header_key = request.headers.get("X-Admin-Key", "").strip()
    if not header_key or not hmac.compare_digest(header_key, expected_key):
        return None

    key_hash = hashlib.sha256(header_key.encode()).hexdigest()[:16]
    return AdminActor(
        actor_type="legacy_key",
        actor_id=f"legacy:{key_hash}",
        auth_mechanism="x_admin_key",
    )


def verify_admin_jwt(request: Request) -> Optional[AdminActor]:
    """
    Verify a Clerk JWT carrying the admin role.
    Returns AdminActor if valid, None if not present/invalid.
    """
    from eagate.core.clerk_auth import verify_jwt_token, is_admin_user

    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None

    token = auth_header[7:].strip()
    if not token:
        return None

    try:
        claims = verify_jwt_token(token)
    except jwt.PyJWTError:
        return None
    if not is_admin_user(claims):
        return None

    return AdminActor(
        actor_type="clerk",
        actor_id=claims.get("sub", "unknown"),
        actor_email=claims.get("email"),
        auth_mechanism="clerk_jwt",
    )


def get_admin_actor(request: Request) -> Optional[AdminActor]:
    """
    Attempt to authenticate admin from request.
    Returns AdminActor or None (does not raise).
    """
    mode = settings.ADMIN_AUTH_MODE.lower()

    if mode in {"clerk", "hybrid"}:
        actor = verify_admin_jwt(request)
        if actor:
            return actor

    if mode in {"legacy", "hybrid"}:
        actor = verify_admin_key(request)
        if actor:
            return actor

    return None


def require_admin(request: Request) -> AdminActor:
    """
    FastAPI dependency: Require admin authentication.

    Usage:
        @router.post("/admin/usage/reset")
        def reset(actor: AdminActor = Depends(require_admin)):
            ...
    """
    actor = get_admin_actor(request)

    if not actor:
        has_clerk = bool(settings.CLERK_SECRET_KEY or settings.CLERK_JWKS_URL)
        has_key = bool(settings.ADMIN_KEY)

        if not has_clerk and not has_key:
            raise AppError(
                "Admin authentication not configured",
                code="admin_auth_unconfigured",
                status_code=503,
            )

        raise UnauthorizedError(
            "Invalid or missing admin credentials",
            code="admin_unauthorized",
        )

    return actor
