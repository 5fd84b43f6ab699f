"""API routes for receipt upload, retrieval and lifecycle."""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, File, Response, UploadFile, status

from receipt_vault.api.dependencies import get_receipt_repository, get_settings, get_upload_orchestrator
from receipt_vault.core.config import Settings
from receipt_vault.core.errors import ValidationError
from receipt_vault.core.security import get_current_account_id, get_optional_account_id
from receipt_vault.models.schemas import DownloadUrlResponse, ReceiptRead, ReceiptStatusUpdate, UploadResult
from receipt_vault.services.receipt_repository import ReceiptRepository
from receipt_vault.services.upload_service import IncomingFile, UploadOrchestrator

router = APIRouter(prefix="/receipts", tags=["receipts"])


async def _read_upload(upload: UploadFile) -> IncomingFile:
    data = await upload.read()
    return IncomingFile(
        file_name=upload.filename or "",
        content_type=upload.content_type or "",
        data=data,
        size=upload.size if upload.size is not None else len(data),
    )


@router.post("/upload")
async def upload_pdf(
    file: Optional[UploadFile] = File(None),
    account_id: Optional[str] = Depends(get_optional_account_id),
    orchestrator: UploadOrchestrator = Depends(get_upload_orchestrator),
) -> dict:
    """Upload one PDF and return the ``{success, data | error}`` envelope.

    Always answers 200; failures are reported in the envelope so the
    client can show them inline.
    """
    incoming = await _read_upload(file) if (file is not None and account_id) else None
    return await orchestrator.upload_pdf(account_id, incoming)


@router.post("/batch", response_model=List[UploadResult])
async def upload_batch(
    files: List[UploadFile] = File(...),
    account_id: str = Depends(get_current_account_id),
    orchestrator: UploadOrchestrator = Depends(get_upload_orchestrator),
    cfg: Settings = Depends(get_settings),
) -> List[UploadResult]:
    """Upload several PDFs in order; one result per file.

    If the account is out of scans the whole batch is refused with a
    single ``quota_exceeded`` result.
    """
    if not files:
        raise ValidationError("No file provided")
    if len(files) > cfg.MAX_BATCH_FILES:
        raise ValidationError(f"Too many files (max {cfg.MAX_BATCH_FILES})")
    incoming = [await _read_upload(f) for f in files]
    return await orchestrator.ingest(account_id, incoming)


@router.get("", response_model=List[ReceiptRead])
async def list_receipts(
    account_id: str = Depends(get_current_account_id),
    repo: ReceiptRepository = Depends(get_receipt_repository),
):
    """List the caller's receipts, newest first."""
    return await repo.list_by_owner(account_id)


@router.get("/{receipt_id}", response_model=ReceiptRead)
async def get_receipt(
    receipt_id: int,
    account_id: str = Depends(get_current_account_id),
    repo: ReceiptRepository = Depends(get_receipt_repository),
):
    return await repo.get_by_id(receipt_id, account_id)


@router.patch("/{receipt_id}/status", response_model=ReceiptRead)
async def update_receipt_status(
    receipt_id: int,
    update: ReceiptStatusUpdate,
    account_id: str = Depends(get_current_account_id),
    repo: ReceiptRepository = Depends(get_receipt_repository),
):
    await repo.update_status(receipt_id, account_id, update.status)
    return await repo.get_by_id(receipt_id, account_id)


@router.delete("/{receipt_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_receipt(
    receipt_id: int,
    account_id: str = Depends(get_current_account_id),
    repo: ReceiptRepository = Depends(get_receipt_repository),
) -> Response:
    """Delete a receipt and its stored file."""
    await repo.delete(receipt_id, account_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{receipt_id}/download_url", response_model=DownloadUrlResponse)
async def get_download_url(
    receipt_id: int,
    account_id: str = Depends(get_current_account_id),
    repo: ReceiptRepository = Depends(get_receipt_repository),
) -> DownloadUrlResponse:
    """Return a download URL for a receipt the caller owns (``null`` if the file is gone)."""
    receipt = await repo.get_by_id(receipt_id, account_id)
    return DownloadUrlResponse(url=await repo.get_download_url(receipt.file_id))
