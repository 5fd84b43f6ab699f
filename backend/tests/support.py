"""Helpers shared by the test modules: sample PDF payloads and fakes."""

from __future__ import annotations

from typing import Optional

from minio.error import S3Error, ServerError

from receipt_vault.core.errors import BlobStoreError
from receipt_vault.services.entitlement_service import QuotaStatus
from receipt_vault.services.storage_service import FilesystemBlobStore
from receipt_vault.services.upload_service import IncomingFile

PDF_BYTES = b"%PDF-1.4\n1 0 obj\n<< /Type /Catalog >>\nendobj\ntrailer\n<< /Root 1 0 R >>\n%%EOF\n"

def pdf_file(name: str = "receipt.pdf", content_type: str = "application/pdf", data: bytes = PDF_BYTES) -> IncomingFile:
    return IncomingFile(file_name=name, content_type=content_type, data=data, size=len(data))

class StubGate:
    """Entitlement gate returning a fixed answer and counting calls."""

    def __init__(self, enabled: bool = True, used: int = 0, allocation: Optional[int] = 10):
        self.status = QuotaStatus(enabled=enabled, used=used, allocation=allocation)
        self.calls: list[tuple[str, str]] = []

    async def check_quota(self, account_id: str, feature_key: str) -> QuotaStatus:
        self.calls.append((account_id, feature_key))
        return self.status

class FlakyBlobStore:
    """Wraps a real store and fails selected operations on demand."""

    def __init__(self, inner: FilesystemBlobStore):
        self.inner = inner
        self.fail_put_for: set[int] = set()  # 1-based put_bytes call numbers
        self.fail_delete = False
        self.fail_resolve = False
        self.put_calls = 0
        self.deleted: list[str] = []

    async def create_upload_url(self) -> str:
        return await self.inner.create_upload_url()

    async def put_bytes(self, url, data, content_type, content_length):
        self.put_calls += 1
        if self.put_calls in self.fail_put_for:
            raise BlobStoreError("connection reset by peer", operation="put_bytes")
        return await self.inner.put_bytes(url, data, content_type, content_length)

    async def resolve_download_url(self, file_id):
        if self.fail_resolve:
            raise BlobStoreError("storage unavailable", operation="resolve_download_url")
        return await self.inner.resolve_download_url(file_id)

    async def delete(self, file_id):
        if self.fail_delete:
            raise BlobStoreError("storage unavailable", operation="delete")
        self.deleted.append(file_id)
        await self.inner.delete(file_id)

class _NoSuchKey(S3Error):
    code = "NoSuchKey"

    def __init__(self):
        Exception.__init__(self, "NoSuchKey")

    def __str__(self):
        return "NoSuchKey"

class FakeMinio:
    """Enough of ``minio.Minio`` for the presigned URL flow."""

    def __init__(self):
        self.objects: dict[str, bytes] = {}
        self.buckets: set[str] = set()
        self.removed: list[str] = []

    def bucket_exists(self, bucket):
        return bucket in self.buckets

    def make_bucket(self, bucket):
        self.buckets.add(bucket)

    def presigned_put_object(self, bucket, key, expires):
        return f"http://minio.local/{bucket}/{key}?X-Amz-Expires={int(expires.total_seconds())}&X-Amz-Signature=put"

    def presigned_get_object(self, bucket, key, expires):
        return f"http://minio.local/{bucket}/{key}?X-Amz-Expires={int(expires.total_seconds())}&X-Amz-Signature=get"

    def stat_object(self, bucket, key):
        if key not in self.objects:
            raise _NoSuchKey()
        return object()

    def remove_object(self, bucket, key):
        self.removed.append(key)
        self.objects.pop(key, None)



class UnavailableMinio(FakeMinio):
    """A MinIO whose HEAD/DELETE requests come back as HTTP 503."""

    def stat_object(self, bucket, key):
        raise ServerError("server failed with HTTP status code 503", 503)

    def remove_object(self, bucket, key):
        raise ServerError("server failed with HTTP status code 503", 503)
