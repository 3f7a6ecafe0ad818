"""Caller identity for the comparison API.

The principal is a tagged union passed by value into the service layer:

    Anonymous | AuthenticatedUser(user_id, email, is_admin)

It is resolved from an optional Clerk session JWT. Anonymous callers may read
the archive; only admins may trigger generation (``can_generate``).
"""

import base64
from dataclasses import dataclass
from functools import lru_cache

import jwt as pyjwt
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import PyJWKClient

from sinopulse.core.config import get_settings

_bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Anonymous:
    """Caller without a session."""

    @property
    def can_generate(self) -> bool:
        return False


@dataclass(frozen=True)
class AuthenticatedUser:
    """Caller with a verified session token."""

    user_id: str
    email: str | None = None
    is_admin: bool = False

    @property
    def can_generate(self) -> bool:
        return self.is_admin


Principal = Anonymous | AuthenticatedUser

ANONYMOUS = Anonymous()


def _extract_frontend_api_domain(pk: str) -> str:
    """Extract the Clerk frontend API domain from a publishable key.

    Clerk publishable keys are formatted as ``pk_(test|live)_<base64>`` where the
    base64 payload decodes to ``<domain>$``.
    """
    parts = pk.split("_", 2)
    if len(parts) != 3 or parts[0] != "pk":
        raise ValueError("Invalid Clerk publishable key format")

    try:
        raw = base64.b64decode(parts[2] + "==")
        domain = raw.decode("utf-8").rstrip("$")
    except Exception as exc:
        raise ValueError("Invalid Clerk publishable key: cannot decode") from exc

    if not domain:
        raise ValueError("Invalid Clerk publishable key: empty domain")

    return domain


@lru_cache
def get_jwks_client() -> PyJWKClient:
    """Create a cached JWKS client pointing at the Clerk JWKS endpoint."""
    settings = get_settings()
    domain = _extract_frontend_api_domain(settings.clerk_publishable_key)
    return PyJWKClient(f"https://{domain}/.well-known/jwks.json", cache_keys=True, lifespan=300)


def decode_session_token(token: str) -> dict:
    """Verify and decode a Clerk session JWT, returning its claims.

    Raises ``HTTPException(401)`` on any validation failure.
    """
    try:
        signing_key = get_jwks_client().get_signing_key_from_jwt(token)
        payload = pyjwt.decode(
            token,
            signing_key.key,
            algorithms=["RS256"],
            options={
                "verify_exp": True,
                "verify_nbf": True,
                "verify_iat": True,
                "require": ["sub", "exp", "nbf", "iat"],
            },
        )
    except pyjwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except pyjwt.MissingRequiredClaimError as exc:
        raise HTTPException(status_code=401, detail=f"Missing required claim: {exc}")
    except pyjwt.InvalidTokenError as exc:
        raise HTTPException(status_code=401, detail=f"Invalid token: {exc}")

    if not payload.get("sub"):
        raise HTTPException(status_code=401, detail="Token missing sub claim")
    return payload


def principal_from_claims(claims: dict, admin_emails: list[str]) -> AuthenticatedUser:
    """Build the principal from verified claims.

    Admin if the JWT public metadata says so or the email is in the configured admin list.
    """
    email = claims.get("email") or None
    allowed = {e.strip().lower() for e in admin_emails if e.strip()}
    is_admin = (claims.get("public_metadata") or {}).get("admin") is True or (
        email is not None and email.lower() in allowed
    )
    return AuthenticatedUser(user_id=claims["sub"], email=email, is_admin=is_admin)


async def get_principal(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
) -> Principal:
    """FastAPI dependency: resolve the caller, Anonymous when no token is sent.

    A token that is present but invalid is rejected with 401 rather than
    silently downgraded to Anonymous.
    """
    if credentials is None:
        return ANONYMOUS

    claims = decode_session_token(credentials.credentials)
    settings = get_settings()

    try:
        expected_issuer = f"https://{_extract_frontend_api_domain(settings.clerk_publishable_key)}"
    except ValueError as exc:
        raise HTTPException(status_code=500, detail="Authentication is misconfigured") from exc
    if claims.get("iss") != expected_issuer:
        raise HTTPException(status_code=401, detail="Invalid issuer (iss mismatch)")

    azp = claims.get("azp")
    if azp and azp not in settings.clerk_allowed_origins:
        raise HTTPException(status_code=401, detail="Unauthorized origin (azp mismatch)")

    principal = principal_from_claims(claims, settings.admin_emails)
    request.state.user_id = principal.user_id
    return principal


async def require_admin(principal: Principal = Depends(get_principal)) -> AuthenticatedUser:
    """FastAPI dependency for administrative archive operations."""
    if isinstance(principal, Anonymous):
        raise HTTPException(status_code=401, detail="Missing authorization header")
    if not principal.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return principal
