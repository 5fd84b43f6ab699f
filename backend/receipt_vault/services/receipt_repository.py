"""Receipt record store.

``ReceiptRepository`` holds the owner-facing operations.  Every one of
them takes the caller's account id and enforces ownership with a fixed
ordering: a missing caller is ``UnauthenticatedError``, a missing record
is ``NotFoundError`` and only then a foreign record is
``UnauthorizedError``.

``ExtractionWriter`` is the privileged side used by the extraction actor.
It skips the ownership check and is only reachable through the internal
API, never through the owner-facing routes.

Status transitions are a closed table: receipts only move forward from
``pending``.  Re-extraction is done by attaching data again, never by
resetting the status.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence, Union

from sqlalchemy import select
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from receipt_vault.core.errors import (
    BlobStoreError,
    ConcurrentModificationError,
    InvalidStatusTransitionError,
    NotFoundError,
    OrphanResourceError,
    TransientIOError,
    UnauthenticatedError,
    UnauthorizedError,
    ValidationError,
)
from receipt_vault.core.observability import sentry_capture_message
from receipt_vault.models.enums import ReceiptStatus
from receipt_vault.models.schemas import ExtractedReceiptData
from receipt_vault.models.tables import Receipt
from receipt_vault.services.storage_service import BlobStore

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[ReceiptStatus, frozenset[ReceiptStatus]] = {
    ReceiptStatus.PENDING: frozenset({ReceiptStatus.PROCESSED, ReceiptStatus.FAILED}),
    ReceiptStatus.PROCESSED: frozenset(),
    ReceiptStatus.FAILED: frozenset(),
}

EXTRACTED_FIELDS = (
    "file_display_name",
    "merchant_name",
    "merchant_address",
    "merchant_contact",
    "transaction_date",
    "transaction_amount",
    "currency",
    "receipt_summary",
)


async def _commit(session: AsyncSession, operation: str, receipt_id: Optional[int] = None) -> None:
    try:
        await session.commit()
    except StaleDataError as exc:
        await session.rollback()
        raise ConcurrentModificationError(operation, receipt_id) from exc
    except OperationalError as exc:
        await session.rollback()
        raise TransientIOError(str(exc.orig or exc), operation=operation, receipt_id=receipt_id) from exc


def _coerce_status(value: Union[ReceiptStatus, str]) -> ReceiptStatus:
    try:
        return ReceiptStatus(value)
    except ValueError as exc:
        raise ValidationError(f"Unknown receipt status: {value!r}") from exc


class ReceiptRepository:
    """Owner-scoped receipt operations."""

    def __init__(self, session: AsyncSession, blob_store: BlobStore) -> None:
        self.session = session
        self.blob_store = blob_store

    @staticmethod
    def _require_caller(caller_id: Optional[str]) -> str:
        if not caller_id:
            raise UnauthenticatedError()
        return caller_id

    async def _get_owned(self, receipt_id: int, caller_id: Optional[str]) -> Receipt:
        caller_id = self._require_caller(caller_id)
        receipt = await self.session.get(Receipt, receipt_id)
        if receipt is None:
            raise NotFoundError()
        if receipt.owner_id != caller_id:
            logger.warning("[receipts] ownership denied receipt_id=%s caller=%s", receipt_id, caller_id)
            raise UnauthorizedError()
        return receipt

    async def create(self, owner_id: str, file_id: str, file_name: str, size: int, mime_type: str) -> int:
        """Insert a ``pending`` receipt with no extracted data and return its id."""
        owner_id = self._require_caller(owner_id)
        if not file_id:
            raise ValidationError("file_id is required")
        if not file_name:
            raise ValidationError("file_name is required")
        if size is None or size < 0:
            raise ValidationError("size must be a non-negative number of bytes")

        receipt = Receipt(
            owner_id=owner_id,
            file_id=file_id,
            file_name=file_name,
            size=int(size),
            mime_type=mime_type or "application/octet-stream",
            status=ReceiptStatus.PENDING,
            items=[],
        )
        self.session.add(receipt)
        await _commit(self.session, "create_receipt")
        logger.info("[receipts] created id=%s owner=%s file_id=%s", receipt.id, owner_id, file_id)
        return receipt.id

    async def list_by_owner(self, owner_id: Optional[str]) -> Sequence[Receipt]:
        """All receipts owned by ``owner_id``, newest first."""
        owner_id = self._require_caller(owner_id)
        query = (
            select(Receipt)
            .where(Receipt.owner_id == owner_id)
            .order_by(Receipt.uploaded_at.desc(), Receipt.id.desc())
        )
        result = await self.session.execute(query)
        return result.scalars().all()

    async def get_by_id(self, receipt_id: int, caller_id: Optional[str]) -> Receipt:
        return await self._get_owned(receipt_id, caller_id)

    async def update_status(
        self, receipt_id: int, caller_id: Optional[str], new_status: Union[ReceiptStatus, str]
    ) -> None:
        requested = _coerce_status(new_status)
        receipt = await self._get_owned(receipt_id, caller_id)
        current = ReceiptStatus(receipt.status)
        if requested == current:
            return
        if requested not in ALLOWED_TRANSITIONS[current]:
            raise InvalidStatusTransitionError(current.value, requested.value)
        receipt.status = requested
        await _commit(self.session, "update_status", receipt_id)
        logger.info("[receipts] status id=%s %s -> %s", receipt_id, current.value, requested.value)

    async def delete(self, receipt_id: int, caller_id: Optional[str]) -> None:
        """Delete the backing file, then the record.

        If the file cannot be deleted the record is left untouched so the
        operation can be retried.  If the record cannot be deleted after the
        file is gone, the pair is reported for reconciliation.
        """
        receipt = await self._get_owned(receipt_id, caller_id)
        file_id = receipt.file_id

        try:
            await self.blob_store.delete(file_id)
        except TransientIOError as exc:
            raise BlobStoreError(
                f"could not delete file {file_id}: {exc}", operation="delete_receipt", receipt_id=receipt_id
            ) from exc

        try:
            await self.session.delete(receipt)
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            logger.error(
                "[receipts] reconciliation needed: file deleted but record kept receipt_id=%s file_id=%s err=%s",
                receipt_id, file_id, exc,
            )
            sentry_capture_message(
                "receipt record orphaned after file deletion",
                extras={"receipt_id": receipt_id, "file_id": file_id, "error": str(exc)},
            )
            raise OrphanResourceError(
                f"Receipt {receipt_id} kept after its file was deleted", receipt_id=receipt_id, file_id=file_id
            ) from exc
        logger.info("[receipts] deleted id=%s file_id=%s", receipt_id, file_id)

    async def get_download_url(self, file_id: str) -> Optional[str]:
        """Resolve a file id to a download URL.

        No ownership check happens here: the file id is an unguessable
        capability.  Callers exposing this to end users should go through
        ``get_by_id`` first, as the API does.
        """
        return await self.blob_store.resolve_download_url(file_id)


class ExtractionWriter:
    """Privileged write path for the extraction actor."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def attach_extracted_data(self, receipt_id: int, fields: ExtractedReceiptData) -> str:
        """Store extracted fields, mark the receipt ``processed`` and return its owner id."""
        receipt = await self.session.get(Receipt, receipt_id)
        if receipt is None:
            raise NotFoundError()

        for name in EXTRACTED_FIELDS:
            setattr(receipt, name, getattr(fields, name))
        receipt.items = [item.model_dump() for item in fields.items]
        receipt.status = ReceiptStatus.PROCESSED
        await _commit(self.session, "attach_extracted_data", receipt_id)
        logger.info("[receipts] extracted data attached id=%s items=%d", receipt_id, len(fields.items))
        return receipt.owner_id
