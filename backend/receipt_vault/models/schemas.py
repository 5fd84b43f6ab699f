"""Pydantic schemas for request and response models.

Pydantic models validate and serialise data that crosses the boundary of
the API.  They are intentionally separate from the ORM models so the
stored shape and the exposed shape can evolve independently.

The extraction payload accepts both ``snake_case`` and ``camelCase`` keys
because the extraction actor is an external process that speaks the
camelCase field names of the upload client.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import AliasGenerator, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .enums import ReceiptStatus


# ---------------------------------------------------------------------------
# Extraction payload

# Accept camelCase on input, always serialise snake_case
_ACCEPT_CAMEL_CASE = ConfigDict(
    alias_generator=AliasGenerator(validation_alias=to_camel),
    populate_by_name=True,
)


class LineItem(BaseModel):
    """Individual line item on a receipt.

    ``total_price`` is stored as given; it is not checked against
    ``quantity * unit_price``.
    """

    model_config = _ACCEPT_CAMEL_CASE

    name: str
    quantity: float
    unit_price: float
    total_price: float


class ExtractedReceiptData(BaseModel):
    """Structured fields attached to a receipt by the extraction actor."""

    model_config = _ACCEPT_CAMEL_CASE

    file_display_name: Optional[str] = None
    merchant_name: Optional[str] = None
    merchant_address: Optional[str] = None
    merchant_contact: Optional[str] = None
    transaction_date: Optional[str] = None
    transaction_amount: Optional[str] = None
    currency: Optional[str] = None
    receipt_summary: Optional[str] = None
    items: List[LineItem] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# API request/response schemas


class ReceiptRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    owner_id: str
    file_id: str
    file_name: str
    mime_type: str
    size: int
    status: ReceiptStatus
    file_display_name: Optional[str] = None
    merchant_name: Optional[str] = None
    merchant_address: Optional[str] = None
    merchant_contact: Optional[str] = None
    transaction_date: Optional[str] = None
    transaction_amount: Optional[str] = None
    currency: Optional[str] = None
    receipt_summary: Optional[str] = None
    items: List[LineItem] = Field(default_factory=list)
    uploaded_at: datetime
    updated_at: Optional[datetime] = None

    @field_validator("items", mode="before")
    @classmethod
    def _null_items(cls, v):
        return v or []


class ReceiptStatusUpdate(BaseModel):
    status: ReceiptStatus


class UploadResult(BaseModel):
    """Outcome for one file of an ingest batch.

    A quota denial is reported as a single result with
    ``error_type="quota_exceeded"``, no ``file_name`` and the current
    ``allocation``.
    """

    success: bool
    file_name: Optional[str] = None
    receipt_id: Optional[int] = None
    file_url: Optional[str] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    allocation: Optional[int] = None


class DownloadUrlResponse(BaseModel):
    url: Optional[str] = None


class AccessTokenResponse(BaseModel):
    token: Optional[str] = None


class AttachExtractedDataResponse(BaseModel):
    owner_id: str


class QuotaRead(BaseModel):
    feature: str
    enabled: bool
    used: int
    allocation: Optional[int] = None
