from __future__ import annotations

import pytest

from receipt_vault.core.errors import (
    BlobStoreError,
    ConcurrentModificationError,
    InvalidStatusTransitionError,
    NotFoundError,
    OrphanResourceError,
    UnauthenticatedError,
    UnauthorizedError,
    ValidationError,
)
from receipt_vault.models.enums import ReceiptStatus
from receipt_vault.models.schemas import ExtractedReceiptData, LineItem
from receipt_vault.services.receipt_repository import EXTRACTED_FIELDS, ExtractionWriter, ReceiptRepository

from support import PDF_BYTES, FlakyBlobStore


async def _store_file(blob_store) -> str:
    url = await blob_store.create_upload_url()
    return await blob_store.put_bytes(url, PDF_BYTES, "application/pdf", len(PDF_BYTES))


async def _create(session_factory, blob_store, owner="user_a", name="receipt.pdf") -> tuple[int, str]:
    file_id = await _store_file(blob_store)
    async with session_factory() as session:
        rid = await ReceiptRepository(session, blob_store).create(owner, file_id, name, len(PDF_BYTES), "application/pdf")
    return rid, file_id


def _extracted() -> ExtractedReceiptData:
    return ExtractedReceiptData(
        file_display_name="Coffee run",
        merchant_name="Blue Bottle",
        merchant_address="1 Market St",
        merchant_contact="+1 555 0100",
        transaction_date="2026-10-02",
        transaction_amount="12.50",
        currency="USD",
        receipt_summary="Two lattes",
        items=[
            LineItem(name="Latte", quantity=2, unit_price=5.0, total_price=10.0),
            LineItem(name="Tip", quantity=1, unit_price=2.5, total_price=2.5),
        ],
    )


@pytest.mark.asyncio
async def test_create_then_get_is_pending_without_extracted_fields(session_factory, blob_store):
    rid, file_id = await _create(session_factory, blob_store)
    async with session_factory() as session:
        receipt = await ReceiptRepository(session, blob_store).get_by_id(rid, "user_a")
    assert receipt.status == ReceiptStatus.PENDING
    assert receipt.file_id == file_id
    assert receipt.size == len(PDF_BYTES)
    assert receipt.uploaded_at is not None
    for name in EXTRACTED_FIELDS:
        assert getattr(receipt, name) is None
    assert receipt.items == []


@pytest.mark.asyncio
async def test_create_rejects_negative_size_and_missing_owner(session_factory, blob_store):
    async with session_factory() as session:
        repo = ReceiptRepository(session, blob_store)
        with pytest.raises(ValidationError):
            await repo.create("user_a", "f" * 32, "x.pdf", -1, "application/pdf")
        with pytest.raises(UnauthenticatedError):
            await repo.create("", "f" * 32, "x.pdf", 10, "application/pdf")


@pytest.mark.asyncio
async def test_list_by_owner_is_scoped_and_newest_first(session_factory, blob_store):
    first, _ = await _create(session_factory, blob_store, owner="user_a", name="first.pdf")
    await _create(session_factory, blob_store, owner="user_b", name="other.pdf")
    second, _ = await _create(session_factory, blob_store, owner="user_a", name="second.pdf")

    async with session_factory() as session:
        repo = ReceiptRepository(session, blob_store)
        mine = await repo.list_by_owner("user_a")
        theirs = await repo.list_by_owner("user_b")

    assert [r.id for r in mine] == [second, first]
    assert all(r.owner_id == "user_a" for r in mine)
    assert [r.file_name for r in theirs] == ["other.pdf"]


@pytest.mark.asyncio
async def test_not_found_is_reported_before_unauthorized(session_factory, blob_store):
    rid, _ = await _create(session_factory, blob_store, owner="user_a")
    async with session_factory() as session:
        repo = ReceiptRepository(session, blob_store)
        with pytest.raises(NotFoundError):
            await repo.get_by_id(rid + 1000, "user_b")
        with pytest.raises(UnauthorizedError):
            await repo.get_by_id(rid, "user_b")
        with pytest.raises(UnauthenticatedError):
            await repo.get_by_id(rid, None)


@pytest.mark.asyncio
async def test_other_owner_cannot_mutate(session_factory, blob_store):
    rid, file_id = await _create(session_factory, blob_store, owner="user_a")
    async with session_factory() as session:
        repo = ReceiptRepository(session, blob_store)
        with pytest.raises(UnauthorizedError):
            await repo.update_status(rid, "user_b", ReceiptStatus.FAILED)
        with pytest.raises(UnauthorizedError):
            await repo.delete(rid, "user_b")

    async with session_factory() as session:
        receipt = await ReceiptRepository(session, blob_store).get_by_id(rid, "user_a")
    assert receipt.status == ReceiptStatus.PENDING
    assert await blob_store.resolve_download_url(file_id) is not None


@pytest.mark.asyncio
async def test_update_status_follows_transition_table(session_factory, blob_store):
    rid, _ = await _create(session_factory, blob_store)
    async with session_factory() as session:
        repo = ReceiptRepository(session, blob_store)
        await repo.update_status(rid, "user_a", "pending")  # same state is a no-op
        await repo.update_status(rid, "user_a", ReceiptStatus.FAILED)
        with pytest.raises(InvalidStatusTransitionError):
            await repo.update_status(rid, "user_a", ReceiptStatus.PENDING)
        with pytest.raises(ValidationError):
            await repo.update_status(rid, "user_a", "archived")
        receipt = await repo.get_by_id(rid, "user_a")
    assert receipt.status == ReceiptStatus.FAILED


@pytest.mark.asyncio
async def test_attach_extracted_data_marks_processed_and_returns_owner(session_factory, blob_store):
    rid, _ = await _create(session_factory, blob_store, owner="user_a")
    fields = _extracted()
    async with session_factory() as session:
        owner = await ExtractionWriter(session).attach_extracted_data(rid, fields)
    assert owner == "user_a"

    async with session_factory() as session:
        receipt = await ReceiptRepository(session, blob_store).get_by_id(rid, "user_a")
    assert receipt.status == ReceiptStatus.PROCESSED
    for name in EXTRACTED_FIELDS:
        assert getattr(receipt, name) == getattr(fields, name)
    assert receipt.items == [item.model_dump() for item in fields.items]


@pytest.mark.asyncio
async def test_processed_receipt_cannot_go_back_to_pending(session_factory, blob_store):
    rid, _ = await _create(session_factory, blob_store)
    async with session_factory() as session:
        await ExtractionWriter(session).attach_extracted_data(rid, _extracted())
    async with session_factory() as session:
        with pytest.raises(InvalidStatusTransitionError):
            await ReceiptRepository(session, blob_store).update_status(rid, "user_a", ReceiptStatus.PENDING)


@pytest.mark.asyncio
async def test_attach_extracted_data_unknown_receipt(session_factory):
    async with session_factory() as session:
        with pytest.raises(NotFoundError):
            await ExtractionWriter(session).attach_extracted_data(424242, _extracted())


@pytest.mark.asyncio
async def test_delete_removes_record_and_file_and_second_delete_is_not_found(session_factory, blob_store):
    rid, file_id = await _create(session_factory, blob_store)
    async with session_factory() as session:
        repo = ReceiptRepository(session, blob_store)
        await repo.delete(rid, "user_a")
        with pytest.raises(NotFoundError):
            await repo.get_by_id(rid, "user_a")
        assert await repo.get_download_url(file_id) is None
        with pytest.raises(NotFoundError):
            await repo.delete(rid, "user_a")


@pytest.mark.asyncio
async def test_delete_keeps_record_when_file_delete_fails(session_factory, blob_store):
    flaky = FlakyBlobStore(blob_store)
    rid, file_id = await _create(session_factory, blob_store)
    flaky.fail_delete = True
    async with session_factory() as session:
        with pytest.raises(BlobStoreError) as excinfo:
            await ReceiptRepository(session, flaky).delete(rid, "user_a")
    assert excinfo.value.receipt_id == rid

    async with session_factory() as session:
        receipt = await ReceiptRepository(session, blob_store).get_by_id(rid, "user_a")
    assert receipt.file_id == file_id
    assert await blob_store.resolve_download_url(file_id) is not None


@pytest.mark.asyncio
async def test_stale_writer_gets_concurrent_modification(session_factory, blob_store):
    rid, _ = await _create(session_factory, blob_store)
    async with session_factory() as user_session, session_factory() as actor_session:
        repo = ReceiptRepository(user_session, blob_store)
        await repo.get_by_id(rid, "user_a")  # load version 1
        await ExtractionWriter(actor_session).attach_extracted_data(rid, _extracted())
        with pytest.raises(ConcurrentModificationError):
            await repo.update_status(rid, "user_a", ReceiptStatus.FAILED)


@pytest.mark.asyncio
async def test_record_kept_after_file_delete_is_reported_as_orphan(session_factory, blob_store):
    flaky = FlakyBlobStore(blob_store)
    rid, file_id = await _create(session_factory, blob_store)
    async with session_factory() as user_session, session_factory() as actor_session:
        repo = ReceiptRepository(user_session, flaky)
        await repo.get_by_id(rid, "user_a")  # load version 1
        await ExtractionWriter(actor_session).attach_extracted_data(rid, _extracted())
        with pytest.raises(OrphanResourceError) as excinfo:
            await repo.delete(rid, "user_a")
    assert excinfo.value.receipt_id == rid
    assert excinfo.value.file_id == file_id
    assert flaky.deleted == [file_id]

    async with session_factory() as session:
        repo = ReceiptRepository(session, blob_store)
        receipt = await repo.get_by_id(rid, "user_a")
        assert receipt.status == ReceiptStatus.PROCESSED
        assert await repo.get_download_url(file_id) is None
