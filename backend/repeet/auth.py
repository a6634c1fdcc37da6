"""Supabase authentication utilities for the Repeet backend."""
from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, Optional

import httpx
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from .logging_config import get_logger

logger = get_logger("repeet.auth")

DEFAULT_AUDIENCE = "authenticated"


@dataclass
class AuthenticatedUser:
    """A signed-in Supabase user. ``sub`` is the user id that owns remote rows."""

    sub: str
    email: Optional[str] = None
    role: Optional[str] = None


_http_bearer = HTTPBearer(auto_error=False)


def _supabase_url() -> Optional[str]:
    url = os.getenv("SUPABASE_URL")
    return url.rstrip("/") if url else None


def _require_supabase_settings() -> Dict[str, Any]:
    url = _supabase_url()
    anon_key = os.getenv("SUPABASE_ANON_KEY")

    if not url or not anon_key:
        logger.warning("Supabase configuration missing", url=url, anon_key=bool(anon_key))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Authentication provider is not configured",
        )

    return {"url": url, "anon_key": anon_key}


@lru_cache(maxsize=1)
def _get_jwks(url: str) -> Dict[str, Any]:
    jwks_url = f"{url}/auth/v1/.well-known/jwks.json"
    try:
        response = httpx.get(jwks_url, timeout=5.0)
        response.raise_for_status()
        return response.json()
    except httpx.HTTPError as exc:
        logger.error("Failed to fetch JWKS", url=jwks_url, error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Authentication service temporarily unavailable",
        ) from exc


def _get_signing_key(token: str) -> Dict[str, Any]:
    url = _supabase_url()
    if not url:
        logger.warning("Cannot verify token without SUPABASE_URL or SUPABASE_JWT_SECRET")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Authentication provider is not configured",
        )

    try:
        header = jwt.get_unverified_header(token)
    except JWTError as exc:
        logger.warning("Unable to read token header", error=str(exc))
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token") from exc

    kid = header.get("kid")
    for key in _get_jwks(url).get("keys", []):
        if key.get("kid") == kid:
            return key

    logger.warning("No matching JWKS key found", kid=kid)
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unable to verify token")


def _decode_token(token: str) -> Dict[str, Any]:
    audience = os.getenv("SUPABASE_JWT_AUDIENCE", DEFAULT_AUDIENCE)
    secret = os.getenv("SUPABASE_JWT_SECRET")

    # Legacy Supabase projects sign with a shared secret, newer ones publish a JWKS
    if secret:
        key: Any = secret
        algorithms = ["HS256"]
    else:
        key = _get_signing_key(token)
        algorithms = [key.get("alg") or "ES256"]

    try:
        return jwt.decode(token, key, algorithms=algorithms, audience=audience)
    except JWTError as exc:
        logger.warning("Token verification failed", error=str(exc))
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid authentication token") from exc


async def login_with_email_password(email: str, password: str) -> Dict[str, Any]:
    settings = _require_supabase_settings()
    token_url = f"{settings['url']}/auth/v1/token?grant_type=password"

    try:
        async with httpx.AsyncClient(timeout=5.0) as client:
            response = await client.post(
                token_url,
                json={"email": email, "password": password},
                headers={"apikey": settings["anon_key"]},
            )
    except httpx.HTTPError as exc:
        logger.error("Supabase login request failed", url=token_url, error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Authentication service temporarily unavailable",
        ) from exc

    if response.status_code in (status.HTTP_400_BAD_REQUEST, status.HTTP_401_UNAUTHORIZED):
        logger.info("Supabase login failed with invalid credentials", email=email)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid email or password")

    try:
        response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        logger.error(
            "Supabase login returned unexpected status",
            status_code=response.status_code,
            response_text=response.text,
        )
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Authentication service error",
        ) from exc

    token_data = response.json()
    if "access_token" not in token_data:
        logger.error("Supabase login response missing access token", response_text=response.text)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Authentication service error",
        )

    logger.info("User signed in", email=email)
    return token_data


async def sign_out(access_token: str) -> None:
    """Revoke the session behind ``access_token``. The local store is left untouched."""
    settings = _require_supabase_settings()
    logout_url = f"{settings['url']}/auth/v1/logout"

    try:
        async with httpx.AsyncClient(timeout=5.0) as client:
            response = await client.post(
                logout_url,
                headers={"apikey": settings["anon_key"], "Authorization": f"Bearer {access_token}"},
            )
            response.raise_for_status()
    except httpx.HTTPError as exc:
        logger.error("Supabase logout request failed", url=logout_url, error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Authentication service temporarily unavailable",
        ) from exc


async def get_optional_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_http_bearer),
) -> Optional[AuthenticatedUser]:
    """Resolve the authenticated user if a bearer token is provided."""

    if credentials is None:
        return None

    payload = _decode_token(credentials.credentials)
    subject = payload.get("sub")
    if not subject:
        logger.warning("Token missing subject claim")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid authentication token")

    return AuthenticatedUser(sub=subject, email=payload.get("email"), role=payload.get("role"))
