"""SQLAlchemy ORM models for the receipt vault API.

A single table holds receipts.  Owners are identified by the opaque
account id supplied by the identity provider, so there is no local user
table.  Line items are stored as a JSON list because they are only ever
written and read as a whole by the extraction actor.

``version`` is the optimistic-concurrency counter: SQLAlchemy adds it to
the WHERE clause of every UPDATE/DELETE and bumps it, so a writer holding
a stale row fails instead of silently overwriting a concurrent change.
"""

from __future__ import annotations

import datetime as dt

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Enum,
    Index,
    Integer,
    String,
    Text,
)

from receipt_vault.core.database import Base
from .enums import ReceiptStatus


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class Receipt(Base):
    """Uploaded PDF receipt and the data extracted from it."""

    __tablename__ = "receipts"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(String, nullable=False, index=True)

    # File reference (immutable after creation)
    file_id = Column(String, nullable=False)
    file_name = Column(String, nullable=False)
    mime_type = Column(String, nullable=False)
    size = Column(Integer, nullable=False)

    status = Column(Enum(ReceiptStatus), default=ReceiptStatus.PENDING, nullable=False)

    # Extracted fields, absent until the extraction actor attaches them
    file_display_name = Column(String, nullable=True)
    merchant_name = Column(String, nullable=True)
    merchant_address = Column(String, nullable=True)
    merchant_contact = Column(String, nullable=True)
    transaction_date = Column(String, nullable=True)
    transaction_amount = Column(String, nullable=True)
    currency = Column(String, nullable=True)
    receipt_summary = Column(Text, nullable=True)
    items = Column(JSON, nullable=False, default=list)

    uploaded_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_receipts_owner_uploaded_at", "owner_id", "uploaded_at"),
    )

    def __repr__(self) -> str:  # pragma: no cover - debugging aid
        return f"<Receipt id={self.id} owner={self.owner_id} status={self.status}>"
