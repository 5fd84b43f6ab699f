"""Upload orchestration: ingest PDF receipts for an account.

For a batch of files the orchestrator

1. validates each file structurally (PDF by MIME type or extension, non
   empty, within ``MAX_UPLOAD_SIZE``) before any network call,
2. asks the entitlement gate once for the whole batch and rejects the
   entire batch if scanning is not enabled,
3. pushes each valid file to the blob store through a one-time upload
   URL, records it as a ``pending`` receipt and resolves a download URL.

Files are processed sequentially and results come back in input order.
Each file is its own unit of work: a failure after the bytes were stored
discards that file's blob and record, while earlier files in the batch
stay committed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from receipt_vault.core.errors import (
    BlobStoreError,
    ReceiptVaultError,
    TransientIOError,
    UnauthenticatedError,
    ValidationError,
    quota_exceeded_message,
)
from receipt_vault.core.observability import sentry_breadcrumb, sentry_set_tags
from receipt_vault.models.schemas import UploadResult
from receipt_vault.services.entitlement_service import EntitlementGate
from receipt_vault.services.receipt_repository import ReceiptRepository
from receipt_vault.services.storage_service import BlobStore

logger = logging.getLogger(__name__)

PDF_MIME_TYPE = "application/pdf"

NOT_AUTHENTICATED = "Not authenticated"
NO_FILE_PROVIDED = "No file provided"
ONLY_PDF_ALLOWED = "Only PDF files are allowed"


@dataclass(frozen=True)
class IncomingFile:
    """An in-memory upload: name, declared MIME type and size, and the bytes."""

    file_name: str
    content_type: str
    data: bytes
    size: Optional[int] = None

    @property
    def declared_size(self) -> int:
        return self.size if self.size is not None else len(self.data)


def is_pdf(file: IncomingFile) -> bool:
    mime = (file.content_type or "").split(";", 1)[0].strip().lower()
    return mime == PDF_MIME_TYPE or (file.file_name or "").lower().endswith(".pdf")


def _error_type(exc: Exception) -> str:
    if isinstance(exc, ValidationError):
        return "validation_error"
    if isinstance(exc, TransientIOError):
        return "transient_io_error"
    return "internal_error"


class UploadOrchestrator:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        blob_store: BlobStore,
        entitlement_gate: EntitlementGate,
        feature_key: str = "scans",
        max_upload_size: int = 10 * 1024 * 1024,
    ) -> None:
        self.session_factory = session_factory
        self.blob_store = blob_store
        self.entitlement_gate = entitlement_gate
        self.feature_key = feature_key
        self.max_upload_size = max_upload_size

    def validate(self, file: IncomingFile) -> Optional[str]:
        """Return a user-facing reason to reject ``file``, or ``None``."""
        if not is_pdf(file):
            return ONLY_PDF_ALLOWED
        if not file.data:
            return "File is empty"
        if len(file.data) > self.max_upload_size:
            return f"File too large. Maximum size is {self.max_upload_size // (1024 * 1024)}MB"
        return None

    async def ingest(self, account_id: Optional[str], files: Sequence[IncomingFile]) -> list[UploadResult]:
        """Upload ``files`` for ``account_id`` and return one result per file.

        A quota denial returns a single ``quota_exceeded`` result instead.

        Raises:
            UnauthenticatedError: when ``account_id`` is missing.
            EntitlementServiceError: when the quota cannot be checked; nothing is stored.
        """
        if not account_id:
            raise UnauthenticatedError()
        if not files:
            return []

        checked = [(f, self.validate(f)) for f in files]
        if any(reason is None for _, reason in checked):
            quota = await self.entitlement_gate.check_quota(account_id, self.feature_key)
            if not quota.enabled:
                logger.info(
                    "[upload] quota denied account=%s used=%d allocation=%s files=%d",
                    account_id, quota.used, quota.allocation, len(files),
                )
                sentry_breadcrumb(
                    category="quota",
                    message="ingest.quota_denied",
                    data={"feature": self.feature_key, "used": quota.used, "allocation": quota.allocation},
                )
                sentry_set_tags({"quota.exceeded": True, "quota.feature": self.feature_key})
                return [
                    UploadResult(
                        success=False,
                        error=quota_exceeded_message(quota.allocation),
                        error_type="quota_exceeded",
                        allocation=quota.allocation,
                    )
                ]

        results: list[UploadResult] = []
        for file, reason in checked:
            if reason is not None:
                logger.info("[upload] rejected file=%s reason=%s", file.file_name, reason)
                results.append(
                    UploadResult(success=False, file_name=file.file_name, error=reason, error_type="validation_error")
                )
                continue
            results.append(await self._ingest_one(account_id, file))
        return results

    async def _ingest_one(self, account_id: str, file: IncomingFile) -> UploadResult:
        file_id: Optional[str] = None
        receipt_id: Optional[int] = None
        try:
            upload_url = await self.blob_store.create_upload_url()
            file_id = await self.blob_store.put_bytes(
                upload_url, file.data, file.content_type or PDF_MIME_TYPE, file.declared_size
            )
            # nameless uploads only get here by MIME type
            stored_name = file.file_name or f"{file_id}.pdf"
            async with self.session_factory() as session:
                receipt_id = await ReceiptRepository(session, self.blob_store).create(
                    owner_id=account_id,
                    file_id=file_id,
                    file_name=stored_name,
                    size=file.declared_size,
                    mime_type=file.content_type or PDF_MIME_TYPE,
                )
            file_url = await self.blob_store.resolve_download_url(file_id)
            if file_url is None:
                raise BlobStoreError("stored file is not retrievable", operation="resolve_download_url", receipt_id=receipt_id)
        except (ReceiptVaultError, SQLAlchemyError) as exc:
            logger.exception("[upload] failed file=%s account=%s", file.file_name, account_id)
            await self._discard(account_id, receipt_id, file_id)
            return UploadResult(success=False, file_name=file.file_name, error=str(exc), error_type=_error_type(exc))

        logger.info("[upload] stored file=%s receipt_id=%s file_id=%s", file.file_name, receipt_id, file_id)
        return UploadResult(success=True, file_name=stored_name, receipt_id=receipt_id, file_url=file_url)

    async def _discard(self, account_id: str, receipt_id: Optional[int], file_id: Optional[str]) -> None:
        """Undo a half-finished upload so it leaves nothing visible behind."""
        try:
            if receipt_id is not None:
                async with self.session_factory() as session:
                    await ReceiptRepository(session, self.blob_store).delete(receipt_id, account_id)
            elif file_id is not None:
                await self.blob_store.delete(file_id)
        except (ReceiptVaultError, SQLAlchemyError) as exc:
            logger.error(
                "[upload] reconciliation needed receipt_id=%s file_id=%s err=%s", receipt_id, file_id, exc
            )

    async def upload_pdf(self, account_id: Optional[str], file: Optional[IncomingFile]) -> dict[str, Any]:
        """Single-file entry point returning the ``{success, data | error}`` envelope."""
        if not account_id:
            return {"success": False, "error": NOT_AUTHENTICATED}
        if file is None:
            return {"success": False, "error": NO_FILE_PROVIDED}
        if not is_pdf(file):
            return {"success": False, "error": ONLY_PDF_ALLOWED}

        try:
            results = await self.ingest(account_id, [file])
        except ReceiptVaultError as exc:
            logger.error("[upload] upload error file=%s err=%s", file.file_name, exc)
            return {"success": False, "error": str(exc)}

        result = results[0]
        if not result.success:
            return {"success": False, "error": result.error}
        return {
            "success": True,
            "data": {
                "receiptId": result.receipt_id,
                "fileName": result.file_name,
                "fileUrl": result.file_url,
            },
        }
