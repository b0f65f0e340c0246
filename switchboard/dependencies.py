from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import Request
import jwt

from .config import get_settings
from .providers import BaseProvider, build_provider
from .usage import UsageMeter

TENANT_HEADER = "X-Tenant-Id"


class AuthError(RuntimeError):
    """Raised when authentication fails."""


class TenantError(RuntimeError):
    """Raised when a request does not identify its tenant."""


def get_provider() -> BaseProvider:
    """
    Dependency returning the active provider.

    Tests rely on this function name to override the provider with a
    scripted provider via FastAPI's dependency_overrides.
    """

    return build_provider()


def get_usage_meter() -> UsageMeter:
    return UsageMeter()


def get_tenant_id(request: Request) -> str:
    tenant_id = (request.headers.get(TENANT_HEADER) or "").strip()
    if not tenant_id:
        raise TenantError(f"Missing {TENANT_HEADER} header")
    return tenant_id


def _get_bearer_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        token = auth_header.split(" ", 1)[1].strip()
        return token or None
    return None


def _verify_jwt(token: str) -> Dict[str, Any]:
    settings = get_settings()
    if not settings.jwt_secret:
        raise AuthError("JWT auth is not configured")

    options = {"verify_aud": bool(settings.jwt_audience)}
    decode_kwargs: Dict[str, Any] = {
        "algorithms": ["HS256"],
        "options": options,
    }
    if settings.jwt_issuer:
        decode_kwargs["issuer"] = settings.jwt_issuer
    if settings.jwt_audience:
        decode_kwargs["audience"] = settings.jwt_audience

    try:
        return jwt.decode(token, settings.jwt_secret, **decode_kwargs)
    except jwt.PyJWTError as exc:
        raise AuthError("Invalid or expired session token") from exc


def require_user_claims(request: Request) -> Dict[str, Any]:
    """Require a valid HS256 session token and return its claims."""
    token = _get_bearer_token(request)
    if not token:
        raise AuthError("Missing session token")
    claims = _verify_jwt(token)
    if not claims.get("sub"):
        raise AuthError("Missing user id in token")
    return claims


def enforce_auth(request: Request) -> Optional[Dict[str, Any]]:
    """
    Auth guard used by mutating endpoints and chat.

    Priority:
    - If AUTH_TOKEN is set, accept only that bearer token (tests/dev).
    - Otherwise, if JWT_SECRET is set, require a valid session token; returns its claims.
    - If neither is configured, authentication is effectively disabled.
    """
    settings = get_settings()
    if settings.auth_token:
        supplied = _get_bearer_token(request)
        if supplied is None:
            raise AuthError("Missing or invalid Authorization header")
        if supplied != settings.auth_token:
            raise AuthError("Invalid bearer token")
        return None

    if settings.jwt_secret:
        return require_user_claims(request)

    # No auth configured: allow through for dev/tests.
    return None
