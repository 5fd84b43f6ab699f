"""Temporary access tokens for the embedded entitlement/billing UI."""

from __future__ import annotations

import logging
from typing import Optional

from receipt_vault.core.errors import EntitlementServiceError
from receipt_vault.services.entitlement_service import SchematicAPI

logger = logging.getLogger(__name__)


class AccessTokenIssuer:
    """Issues short-lived Schematic tokens scoped to one account.

    Tokens are never cached: every call asks Schematic for a fresh one.
    """

    def __init__(self, api: SchematicAPI, resource_type: str = "company", lookup_key: str = "id") -> None:
        self.api = api
        self.resource_type = resource_type
        self.lookup_key = lookup_key

    async def issue_access_token(self, account_id: Optional[str]) -> Optional[str]:
        """Return a token for ``account_id`` or ``None`` when nobody is signed in.

        Raises:
            EntitlementServiceError: when Schematic cannot issue a token.
        """
        if not account_id:
            logger.info("[access-token] no authenticated account; returning None")
            return None

        logger.info("[access-token] issuing temporary access token account=%s", account_id)
        data = await self.api.post(
            "/temporary-access-tokens",
            {"resource_type": self.resource_type, "lookup": {self.lookup_key: account_id}},
            operation="issue_access_token",
        )
        token = data.get("token")
        if not token:
            raise EntitlementServiceError("no token in response", operation="issue_access_token")
        return str(token)
