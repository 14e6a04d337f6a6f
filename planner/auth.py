from __future__ import annotations

import asyncio
import time
from typing import Any, Dict, Optional

import httpx
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import jwt

from .config import Settings, get_settings
from .deps import get_family_directory
from .routes.errors import service_errors
from .services.identity import FallbackFamilyDirectory, PlannerContext, resolve_context


_bearer = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


class JWKSCache:
    """Signing keys of one issuer, refetched once the cache window passes."""

    def __init__(self) -> None:
        self._jwks: Optional[Dict[str, Any]] = None
        self._url: Optional[str] = None
        self._expires_at = 0.0
        self._lock = asyncio.Lock()

    async def get(self, url: str, ttl_seconds: int) -> Dict[str, Any]:
        async with self._lock:
            if self._jwks is None or self._url != url or time.monotonic() >= self._expires_at:
                async with httpx.AsyncClient(timeout=5) as client:
                    resp = await client.get(url)
                    resp.raise_for_status()
                self._jwks = resp.json()
                self._url = url
                self._expires_at = time.monotonic() + ttl_seconds
            return self._jwks


_jwks_cache = JWKSCache()


def _jwks_url(settings: Settings) -> str:
    return settings.clerk_jwks_url or settings.clerk_issuer.rstrip("/") + "/.well-known/jwks.json"


async def _verify_jwt(token: str) -> Dict[str, Any]:
    settings = get_settings()
    if settings.auth_disable_verification:
        # Local development only: claims are trusted without a signature check.
        try:
            return jwt.get_unverified_claims(token)
        except Exception as e:
            raise _unauthorized(f"Invalid token: {e}")

    if not settings.clerk_issuer:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Auth issuer not configured")

    try:
        jwks = await _jwks_cache.get(_jwks_url(settings), settings.jwks_cache_seconds)
    except httpx.HTTPError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=f"Signing keys unavailable: {e}")

    try:
        kid = jwt.get_unverified_header(token).get("kid")
        key = next((k for k in jwks.get("keys", []) if k.get("kid") == kid), None)
        if not key:
            raise _unauthorized("Signing key not found")
        return jwt.decode(
            token,
            key,
            algorithms=[key.get("alg", "RS256")],
            audience=settings.clerk_audience,
            issuer=settings.clerk_issuer,
        )
    except HTTPException:
        raise
    except Exception as e:
        raise _unauthorized(f"JWT verification failed: {e}")


async def get_current_principal(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
) -> Dict[str, Any]:
    if not creds or creds.scheme.lower() != "bearer":
        raise _unauthorized("Missing bearer token")
    claims = await _verify_jwt(creds.credentials)
    if not claims.get("sub"):
        raise _unauthorized("Invalid token: no sub")
    return {
        "sub": claims["sub"],
        "email": claims.get("email") or claims.get("email_address"),
        "claims": claims,
    }


async def get_planner_context(
    principal=Depends(get_current_principal),
    directory: FallbackFamilyDirectory = Depends(get_family_directory),
) -> PlannerContext:
    """Resolve the caller's family once per request and hand it down explicitly."""
    with service_errors():
        return await resolve_context(directory, principal["sub"])
