"""
Session identity resolution.

Priority:
1. Clerk JWT from Authorization header -> authenticated identity keyed by email
2. X-Anonymous-Token header -> anonymous identity keyed by device token
3. Neither -> 401

An anonymous caller that later signs in gets a fresh authenticated
identity; the anonymous usage record is left where it is.
"""
import logging
import re
from typing import Optional

import jwt
from fastapi import Header

from eagate.core.clerk_auth import verify_jwt_token
from eagate.core.errors import UnauthorizedError
from eagate.models.identity import Identity, IdentityKind

logger = logging.getLogger("eagate")

ANONYMOUS_TOKEN_HEADER = "X-Anonymous-Token"
_ANON_TOKEN_RE = re.compile(r"^[A-Za-z0-9_-]{8,128}$")


def normalize_email(email: str) -> str:
    return email.strip().lower()


def is_valid_email(email: Optional[str]) -> bool:
    if not email:
        return False
    local, sep, domain = email.strip().partition("@")
    return bool(sep and local and "." in domain and " " not in email.strip())


def _identity_from_bearer(token: str) -> Identity:
    try:
        claims = verify_jwt_token(token)
    except jwt.ExpiredSignatureError:
        raise UnauthorizedError("Token expired", code="token_expired")
    except jwt.PyJWTError as e:
        logger.debug(f"Invalid token: {e}")
        raise UnauthorizedError("Invalid token", code="invalid_token")

    email = claims.get("email")
    if claims.get("email_verified") is False or not is_valid_email(email):
        raise UnauthorizedError("Token carries no verified email", code="invalid_token")

    return Identity(kind=IdentityKind.AUTHENTICATED, key=normalize_email(email))


def resolve_identity(
    authorization: Optional[str] = None,
    anonymous_token: Optional[str] = None,
) -> Identity:
    """
    Resolve the caller's identity for one request.

    A Bearer token that fails verification is rejected outright rather
    than falling back to the anonymous token.

    Raises:
        UnauthorizedError: invalid token, malformed anonymous token, or no identity
    """
    if authorization and authorization.startswith("Bearer "):
        token = authorization[7:].strip()
        if token:
            return _identity_from_bearer(token)

    if anonymous_token:
        token = anonymous_token.strip()
        if not _ANON_TOKEN_RE.match(token):
            raise UnauthorizedError("Malformed anonymous token", code="invalid_anonymous_token")
        return Identity(kind=IdentityKind.ANONYMOUS, key=token)

    raise UnauthorizedError(
        f"Missing Authorization (Bearer JWT) or {ANONYMOUS_TOKEN_HEADER} header",
        code="identity_required",
    )


def get_identity(
    authorization: Optional[str] = Header(None),
    x_anonymous_token: Optional[str] = Header(None, description="Client-generated device token"),
) -> Identity:
    """FastAPI dependency wrapping resolve_identity.

    Plain def: token verification can fetch JWKS over the network, so
    FastAPI runs it in the threadpool rather than on the event loop.
    """
    return resolve_identity(authorization, x_anonymous_token)
