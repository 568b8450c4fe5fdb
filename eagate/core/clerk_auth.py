"""
Clerk JWT verification.

Handles:
- JWT signature verification (HS256 shared secret, or RS256 via JWKS)
- Issuer/audience validation
- Role extraction
- Test helpers for deterministic testing (no network)

Testing:
- Use create_test_jwt() to create test tokens
- Override JWKS fetch via set_jwks_provider_for_tests()
"""
import json
import time
from typing import Dict, Any, Optional, Callable

import httpx
import jwt
from jwt.exceptions import PyJWKClientError

from eagate.core.config import settings


# JWKS override (tests) and cache keyed by issuer/jwks_url
_jwks_provider_override: Optional[Callable[[str, str], Dict[str, Any]]] = None
_jwks_cache: Dict[str, Dict[str, Any]] = {}
# Forced refetches on unknown kid are throttled per cache key
_jwks_refreshed_at: Dict[str, float] = {}
JWKS_MIN_REFRESH_SECONDS = 30.0


def set_jwks_provider_for_tests(provider: Optional[Callable[[str, str], Dict[str, Any]]]) -> None:
    """Set or clear JWKS provider override for deterministic testing (no network)."""
    global _jwks_provider_override
    _jwks_provider_override = provider
    _jwks_cache.clear()
    _jwks_refreshed_at.clear()


def _default_fetch_jwks(issuer: str, jwks_url: str) -> Dict[str, Any]:
    try:
        response = httpx.get(jwks_url, timeout=settings.OUTBOUND_TIMEOUT_SECONDS)
        response.raise_for_status()
    except httpx.HTTPError as e:
        raise PyJWKClientError(f"Could not fetch JWKS from {jwks_url}: {e}")
    return response.json()


def get_jwks(issuer: str, jwks_url: Optional[str] = None, force_refresh: bool = False) -> Dict[str, Any]:
    """Fetch JWKS using override (tests) or default fetcher. Cached per issuer/url.

    force_refresh bypasses the cache and replaces the cached entry, which is
    how a rotated signing key gets picked up. Forced refetches happen at most
    once per JWKS_MIN_REFRESH_SECONDS for a given issuer/url.
    """
    resolved_url = jwks_url or f"{issuer.rstrip('/')}/.well-known/jwks.json"
    cache_key = f"{issuer}|{resolved_url}"

    if not force_refresh and cache_key in _jwks_cache:
        return _jwks_cache[cache_key]
    if force_refresh and time.time() - _jwks_refreshed_at.get(cache_key, 0.0) < JWKS_MIN_REFRESH_SECONDS:
        return _jwks_cache.get(cache_key, {})

    if _jwks_provider_override:
        jwks = _jwks_provider_override(issuer, resolved_url)
    else:
        jwks = _default_fetch_jwks(issuer, resolved_url)

    _jwks_cache[cache_key] = jwks
    if force_refresh:
        _jwks_refreshed_at[cache_key] = time.time()
    return jwks


def _find_key(jwks: Dict[str, Any], kid: str) -> Optional[Dict[str, Any]]:
    for key in jwks.get("keys", []):
        if key.get("kid") == kid:
            return key
    return None


def verify_jwt_token(token: str) -> Dict[str, Any]:
    """
    Verify Clerk JWT and return claims.

    Raises jwt.PyJWTError on invalid token.

    Args:
        token: Raw JWT string (without "Bearer " prefix)

    Returns:
        Decoded claims dict with keys: sub, email, public_metadata, etc.
    """
    secret = settings.CLERK_SECRET_KEY
    if secret:
        return jwt.decode(
            token,
            secret,
            algorithms=["HS256"],
            options={"verify_signature": True, "verify_exp": True, "verify_aud": False}
        )

    issuer = settings.CLERK_ISSUER
    jwks_url = settings.CLERK_JWKS_URL
    if not issuer and not jwks_url:
        raise jwt.PyJWTError("CLERK_SECRET_KEY, CLERK_ISSUER or CLERK_JWKS_URL must be configured")

    unverified_header = jwt.get_unverified_header(token)
    kid = unverified_header.get("kid")
    if not kid:
        raise jwt.PyJWTError("Token missing 'kid' in header")

    jwks_issuer = issuer or "https://clerk.invalid"
    matching_key = _find_key(get_jwks(jwks_issuer, jwks_url), kid)
    if not matching_key:
        # Unknown kid: the signing key may have rotated since the cache was filled
        matching_key = _find_key(get_jwks(jwks_issuer, jwks_url, force_refresh=True), kid)

    if not matching_key:
        raise jwt.PyJWTError(f"Key ID '{kid}' not found in JWKS")

    from jwt.algorithms import RSAAlgorithm
    public_key = RSAAlgorithm.from_jwk(json.dumps(matching_key))

    return jwt.decode(
        token,
        public_key,
        algorithms=["RS256"],
        audience=settings.CLERK_AUDIENCE,
        issuer=issuer,
        options={"verify_signature": True, "verify_exp": True, "verify_aud": bool(settings.CLERK_AUDIENCE)}
    )


def is_admin_user(claims: Dict[str, Any]) -> bool:
    """Check public_metadata.role (or org_role) for "admin"."""
    public_metadata = claims.get("public_metadata", {})
    if isinstance(public_metadata, dict) and public_metadata.get("role") == "admin":
        return True
    return claims.get("org_role") == "admin"


# ============================================================================
# Test Helpers (deterministic, no network)
# ============================================================================

def create_test_jwt(
    sub: str = "test_user_123",
    email: Optional[str] = "test@example.com",
    role: Optional[str] = None,
    exp_minutes: int = 60,
    secret: str = "test-secret-key-for-eagate",
    email_verified: Optional[bool] = None,
) -> str:
    """
    Create an HS256 test JWT.

    Args:
        sub: User ID (subject)
        email: User email
        role: Role to set in public_metadata (e.g. "admin")
        exp_minutes: Expiration in minutes from now (negative for expired)
        secret: Signing secret (must match CLERK_SECRET_KEY)
        email_verified: Optional email_verified claim
    """
    now = int(time.time())
    payload: Dict[str, Any] = {
        "sub": sub,
        "iat": now,
        "exp": now + (exp_minutes * 60),
        "iss": settings.CLERK_ISSUER or "https://test.clerk.accounts.dev",
        "public_metadata": {},
    }
    if email is not None:
        payload["email"] = email
    if email_verified is not None:
        payload["email_verified"] = email_verified
    if role:
        payload["public_metadata"]["role"] = role

    return jwt.encode(payload, secret, algorithm="HS256")
