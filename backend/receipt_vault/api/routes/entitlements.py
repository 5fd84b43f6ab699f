"""Entitlement routes: temporary access tokens and the caller's scan quota."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends

from receipt_vault.api.dependencies import get_access_token_issuer, get_entitlement_gate, get_settings
from receipt_vault.core.config import Settings
from receipt_vault.core.security import get_current_account_id, get_optional_account_id
from receipt_vault.models.schemas import AccessTokenResponse, QuotaRead
from receipt_vault.services.access_token_service import AccessTokenIssuer
from receipt_vault.services.entitlement_service import EntitlementGate

logger = logging.getLogger(__name__)

router = APIRouter(tags=["entitlements"])


@router.get("/access-token", response_model=AccessTokenResponse)
async def get_temporary_access_token(
    account_id: Optional[str] = Depends(get_optional_account_id),
    issuer: Optional[AccessTokenIssuer] = Depends(get_access_token_issuer),
) -> AccessTokenResponse:
    """Issue a fresh token for the embedded entitlement UI.

    ``token`` is ``null`` when nobody is signed in or when no entitlement
    service is configured; the client then skips rendering the widget.
    """
    if issuer is None:
        logger.info("[access-token] no entitlement service configured")
        return AccessTokenResponse(token=None)
    return AccessTokenResponse(token=await issuer.issue_access_token(account_id))


@router.get("/quota", response_model=QuotaRead)
async def get_quota(
    account_id: str = Depends(get_current_account_id),
    gate: EntitlementGate = Depends(get_entitlement_gate),
    cfg: Settings = Depends(get_settings),
) -> QuotaRead:
    """Current scan usage for the caller, as seen by the entitlement service."""
    quota = await gate.check_quota(account_id, cfg.ENTITLEMENT_FEATURE_KEY)
    return QuotaRead(
        feature=cfg.ENTITLEMENT_FEATURE_KEY,
        enabled=quota.enabled,
        used=quota.used,
        allocation=quota.allocation,
    )
