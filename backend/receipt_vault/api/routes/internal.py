"""Internal routes for the extraction actor.

These bypass receipt ownership and are guarded by ``INTERNAL_API_KEY``
instead of a user identity.  Do not expose ``/internal`` publicly.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from receipt_vault.api.dependencies import get_extraction_writer, require_internal_api_key
from receipt_vault.models.schemas import AttachExtractedDataResponse, ExtractedReceiptData
from receipt_vault.services.receipt_repository import ExtractionWriter

router = APIRouter(
    prefix="/internal",
    tags=["internal"],
    dependencies=[Depends(require_internal_api_key)],
)


@router.post("/receipts/{receipt_id}/extracted-data", response_model=AttachExtractedDataResponse)
async def attach_extracted_data(
    receipt_id: int,
    fields: ExtractedReceiptData,
    writer: ExtractionWriter = Depends(get_extraction_writer),
) -> AttachExtractedDataResponse:
    """Attach extracted fields, mark the receipt processed and return who owns it."""
    owner_id = await writer.attach_extracted_data(receipt_id, fields)
    return AttachExtractedDataResponse(owner_id=owner_id)
