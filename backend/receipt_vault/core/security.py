"""Identity: Clerk JWT verification and account-id resolution.

The identity provider is Clerk.  Incoming requests carry a Clerk-issued
JWT as a Bearer token; it is verified against the instance JWKS (set
``CLERK_JWKS_URL`` to ``https://<frontend-api>/.well-known/jwks.json``).
When ``CLERK_JWT_AUDIENCE`` / ``CLERK_JWT_ISSUER`` are set the
corresponding claims are validated as well.

The ``sub`` claim is the account id.  The rest of the system treats it
as an opaque string and never looks it up anywhere.
"""

from __future__ import annotations

import logging
from typing import Dict, Optional

import requests
from fastapi import Request
from jose import jwt
from starlette.concurrency import run_in_threadpool

from receipt_vault.core.config import Settings
from receipt_vault.core.errors import UnauthenticatedError

logger = logging.getLogger(__name__)

# JWKS cache keyed by URL.  Keys rotate rarely; an unknown ``kid`` clears it.
_jwks_cache: Dict[str, Dict] = {}


def get_clerk_jwks(jwks_url: Optional[str], refresh: bool = False) -> Dict:
    """Fetch and cache the JWKS used to verify Clerk tokens."""
    if not jwks_url:
        raise RuntimeError(
            "CLERK_JWKS_URL is not configured.  Set it to your Clerk instance's JWKS endpoint."
        )
    if not refresh and jwks_url in _jwks_cache:
        return _jwks_cache[jwks_url]
    resp = requests.get(jwks_url, timeout=5)
    resp.raise_for_status()
    data = resp.json()
    if not isinstance(data, dict) or "keys" not in data:
        raise RuntimeError("Invalid JWKS payload from Clerk")
    _jwks_cache[jwks_url] = data
    return data


def decode_clerk_jwt(token: str, cfg: Settings) -> Dict:
    """Decode and verify a Clerk JWT.

    Returns:
        The decoded JWT payload as a dictionary.

    Raises:
        UnauthenticatedError: If the token is malformed or invalid.
    """
    try:
        header = jwt.get_unverified_header(token)
    except Exception as exc:
        raise UnauthenticatedError(f"Invalid token header: {exc}") from exc
    kid = header.get("kid")
    if not kid:
        raise UnauthenticatedError("Invalid Clerk token: missing kid header")

    jwks = get_clerk_jwks(cfg.CLERK_JWKS_URL)
    key = next((k for k in jwks.get("keys", []) if k.get("kid") == kid), None)
    if not key:
        # Rotation: refresh once
        jwks = get_clerk_jwks(cfg.CLERK_JWKS_URL, refresh=True)
        key = next((k for k in jwks.get("keys", []) if k.get("kid") == kid), None)
        if not key:
            raise UnauthenticatedError("Unknown signing key (kid) for Clerk token")

    decode_kwargs: Dict = {"algorithms": ["RS256"], "options": {}}
    if cfg.CLERK_JWT_AUDIENCE:
        decode_kwargs["audience"] = cfg.CLERK_JWT_AUDIENCE
    else:
        decode_kwargs["options"]["verify_aud"] = False
    if cfg.CLERK_JWT_ISSUER:
        decode_kwargs["issuer"] = cfg.CLERK_JWT_ISSUER
    try:
        return jwt.decode(token, key, **decode_kwargs)
    except Exception as exc:
        raise UnauthenticatedError(f"Invalid Clerk token: {exc}") from exc


def _bearer_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header.split(" ", 1)[1].strip() or None
    return None


async def get_optional_account_id(request: Request) -> Optional[str]:
    """Return the caller's account id, or ``None`` when nobody is signed in.

    A missing or unverifiable token both mean "no authenticated account".
    """
    cfg: Settings = request.app.state.settings
    if cfg.DEV_AUTH_BYPASS:
        return cfg.DEV_ACCOUNT_ID

    token = _bearer_token(request)
    if not token:
        return None
    try:
        payload = await run_in_threadpool(decode_clerk_jwt, token, cfg)
    except UnauthenticatedError as exc:
        logger.warning("[auth] token rejected: %s", exc)
        return None
    account_id = payload.get("sub")
    if not account_id:
        logger.warning("[auth] token has no sub claim")
        return None
    return str(account_id)


async def get_current_account_id(request: Request) -> str:
    """Return the caller's account id or raise ``UnauthenticatedError``."""
    account_id = await get_optional_account_id(request)
    if not account_id:
        raise UnauthenticatedError()
    return account_id
