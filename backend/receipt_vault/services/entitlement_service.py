"""Entitlement gate: may this account perform one more scan right now?

Two backends, selected via ``settings.ENTITLEMENT_BACKEND``:

* ``schematic`` asks the Schematic API to check the metered feature flag
  for the account (tracked per company, keyed by the account id).
* ``local`` is the plan-limit approach: usage is the number of receipts
  the account uploaded this calendar month (UTC) and the allocation is a
  fixed ceiling from settings.  Handy for development and tests.

The gate holds no state of its own.  The upload orchestrator calls it
once per batch, server-side, before any bytes are persisted.
"""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol

import httpx
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from receipt_vault.core.errors import EntitlementServiceError
from receipt_vault.models.tables import Receipt

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QuotaStatus:
    enabled: bool
    used: int
    allocation: Optional[int]  # None => unlimited


class EntitlementGate(Protocol):
    async def check_quota(self, account_id: str, feature_key: str) -> QuotaStatus: ...


class SchematicAPI:
    """Thin async client for the few Schematic endpoints we use."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.schematichq.com",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def post(self, path: str, payload: dict[str, Any], operation: str) -> dict[str, Any]:
        """POST ``payload`` and return the response's ``data`` object.

        Raises:
            EntitlementServiceError: on network errors, timeouts and non-2xx responses.
        """
        headers = {"X-Schematic-Api-Key": self._api_key, "Accept": "application/json"}
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, transport=self._transport
            ) as client:
                resp = await client.post(path, json=payload, headers=headers)
        except httpx.TimeoutException as exc:
            raise EntitlementServiceError(f"timed out after {self.timeout:g}s", operation=operation) from exc
        except httpx.HTTPError as exc:
            raise EntitlementServiceError(str(exc), operation=operation) from exc
        if resp.status_code >= 400:
            raise EntitlementServiceError(f"HTTP {resp.status_code} from Schematic", operation=operation)
        try:
            body = resp.json()
        except ValueError as exc:
            raise EntitlementServiceError("invalid JSON from Schematic", operation=operation) from exc
        data = body.get("data") if isinstance(body, dict) else None
        if not isinstance(data, dict):
            raise EntitlementServiceError("response has no data object", operation=operation)
        return data


class SchematicEntitlementGate:
    """Checks a metered feature flag against Schematic."""

    def __init__(self, api: SchematicAPI, lookup_key: str = "id") -> None:
        self.api = api
        self.lookup_key = lookup_key

    async def check_quota(self, account_id: str, feature_key: str) -> QuotaStatus:
        data = await self.api.post(
            f"/flags/{feature_key}/check",
            {"company": {self.lookup_key: account_id}},
            operation="check_quota",
        )
        value = bool(data.get("value"))
        used = int(data.get("feature_usage") or 0)
        allocation = data.get("feature_allocation")
        allocation = int(allocation) if allocation is not None else None
        exceeded = bool(data.get("feature_usage_exceeded"))
        status = QuotaStatus(enabled=value and not exceeded, used=used, allocation=allocation)
        logger.info(
            "[entitlement] schematic feature=%s account=%s enabled=%s used=%d allocation=%s",
            feature_key, account_id, status.enabled, status.used, status.allocation,
        )
        return status


def _month_bounds(when: dt.datetime) -> tuple[dt.datetime, dt.datetime]:
    start = dt.datetime(when.year, when.month, 1, tzinfo=dt.timezone.utc)
    if when.month == 12:
        end = dt.datetime(when.year + 1, 1, 1, tzinfo=dt.timezone.utc)
    else:
        end = dt.datetime(when.year, when.month + 1, 1, tzinfo=dt.timezone.utc)
    return start, end


class LocalEntitlementGate:
    """Monthly receipt-count quota computed from the receipt store."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], monthly_allocation: int) -> None:
        self._session_factory = session_factory
        self.monthly_allocation = monthly_allocation

    async def get_monthly_usage(self, account_id: str, when: Optional[dt.datetime] = None) -> int:
        start, end = _month_bounds(when or dt.datetime.now(dt.timezone.utc))
        q = select(func.count(Receipt.id)).where(
            Receipt.owner_id == account_id,
            Receipt.uploaded_at >= start,
            Receipt.uploaded_at < end,
        )
        async with self._session_factory() as session:
            result = await session.execute(q)
            return int(result.scalar() or 0)

    async def check_quota(self, account_id: str, feature_key: str) -> QuotaStatus:
        used = await self.get_monthly_usage(account_id)
        status = QuotaStatus(enabled=used < self.monthly_allocation, used=used, allocation=self.monthly_allocation)
        logger.info(
            "[entitlement] local feature=%s account=%s enabled=%s used=%d allocation=%d",
            feature_key, account_id, status.enabled, used, self.monthly_allocation,
        )
        return status


__all__ = [
    "QuotaStatus",
    "EntitlementGate",
    "SchematicAPI",
    "SchematicEntitlementGate",
    "LocalEntitlementGate",
]
