"""Blob store adapter.

Supports two backends selected via ``settings.STORAGE_BACKEND``:

1. **minio** (default): S3-compatible object storage.  Upload URLs are
   presigned PUT URLs; download URLs are presigned GET URLs.
2. **filesystem**: Stores objects under ``settings.STORAGE_DIRECTORY``.
   Upload URLs are HMAC-signed ``fs://upload/<key>`` tokens consumed
   in-process; download URLs point at the API's ``/storage/{file_id}``
   route and carry a short-lived HMAC signature.

Both backends share the same contract: an upload URL is single use and
expires after ``UPLOAD_URL_TTL_SECONDS``; the returned file id is an
opaque object key that is durable as soon as ``put_bytes`` returns;
``delete`` is idempotent.
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import hmac
import logging
import re
import time
import uuid
from datetime import timedelta
from pathlib import Path
from typing import Optional, Protocol
from urllib.parse import parse_qs, urlencode, urlsplit

import httpx
import urllib3
from minio import Minio
from minio.error import MinioException, S3Error
from starlette.concurrency import run_in_threadpool

from receipt_vault.core.config import Settings
from receipt_vault.core.errors import BlobStoreError, UploadUrlExpiredError, ValidationError
from receipt_vault.models.enums import StorageBackend

logger = logging.getLogger(__name__)

_OBJECT_KEY_RE = re.compile(r"^[0-9a-f]{32}$")


class BlobStore(Protocol):
    """What the repository and upload orchestrator need from storage."""

    async def create_upload_url(self) -> str: ...

    async def put_bytes(self, url: str, data: bytes, content_type: str, content_length: int) -> str: ...

    async def resolve_download_url(self, file_id: str) -> Optional[str]: ...

    async def delete(self, file_id: str) -> None: ...


def _new_object_key() -> str:
    return uuid.uuid4().hex


def _check_length(data: bytes, content_length: int) -> None:
    if content_length != len(data):
        raise ValidationError(
            f"Declared size {content_length} does not match payload size {len(data)}"
        )


def _sign(secret: str, message: str) -> str:
    digest = hmac.new(secret.encode(), message.encode(), hashlib.sha256).digest()
    return base64.urlsafe_b64encode(digest).decode().rstrip("=")


class FilesystemBlobStore:
    """Local disk storage, for development and tests."""

    backend = StorageBackend.FILESYSTEM

    def __init__(
        self,
        base_dir: str | Path,
        secret_key: str,
        upload_url_ttl: int = 300,
        download_url_ttl: int = 3600,
        transfer_timeout: float = 300.0,
        public_base_url: str = "",
    ) -> None:
        base_path = Path(base_dir)
        if not base_path.is_absolute():
            base_path = base_path.resolve()
        self.base_dir = base_path
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self._secret = secret_key
        self.upload_url_ttl = upload_url_ttl
        self.download_url_ttl = download_url_ttl
        self.transfer_timeout = transfer_timeout
        self.public_base_url = public_base_url.rstrip("/")
        logger.info("[storage] filesystem base_dir=%s", self.base_dir)

    def _path_for(self, file_id: str) -> Path:
        if not _OBJECT_KEY_RE.match(file_id or ""):
            raise ValidationError(f"Malformed file id: {file_id!r}")
        return self.base_dir / file_id

    async def create_upload_url(self) -> str:
        key = _new_object_key()
        exp = int(time.time()) + self.upload_url_ttl
        sig = _sign(self._secret, f"upload:{key}:{exp}")
        return f"fs://upload/{key}?{urlencode({'exp': exp, 'sig': sig})}"

    def _parse_upload_url(self, url: str) -> str:
        parts = urlsplit(url)
        if parts.scheme != "fs" or parts.netloc != "upload":
            raise BlobStoreError(f"Not a filesystem upload URL: {url}", operation="put_bytes")
        key = parts.path.lstrip("/")
        query = parse_qs(parts.query)
        try:
            exp = int(query["exp"][0])
            sig = query["sig"][0]
        except (KeyError, IndexError, ValueError) as exc:
            raise BlobStoreError("Upload URL is missing its signature", operation="put_bytes") from exc
        if not hmac.compare_digest(_sign(self._secret, f"upload:{key}:{exp}"), sig):
            raise BlobStoreError("Upload URL signature mismatch", operation="put_bytes")
        if time.time() > exp:
            raise UploadUrlExpiredError("Upload URL expired")
        return key

    def _write_once(self, path: Path, data: bytes) -> None:
        # "xb" refuses to overwrite, which is what makes the URL single use
        try:
            with open(path, "xb") as fh:
                fh.write(data)
        except FileExistsError as exc:
            raise UploadUrlExpiredError("Upload URL already used") from exc

    async def put_bytes(self, url: str, data: bytes, content_type: str, content_length: int) -> str:
        key = self._parse_upload_url(url)
        _check_length(data, content_length)
        path = self._path_for(key)
        try:
            await asyncio.wait_for(run_in_threadpool(self._write_once, path, data), timeout=self.transfer_timeout)
        except asyncio.TimeoutError as exc:
            raise BlobStoreError(
                f"transfer timed out after {self.transfer_timeout:g}s", operation="put_bytes"
            ) from exc
        except OSError as exc:
            raise BlobStoreError(str(exc), operation="put_bytes") from exc
        logger.info("[storage] FS saved key=%s bytes=%d type=%s", key, len(data), content_type)
        return key

    def sign_download(self, file_id: str, exp: int) -> str:
        return _sign(self._secret, f"download:{file_id}:{exp}")

    async def resolve_download_url(self, file_id: str) -> Optional[str]:
        try:
            path = self._path_for(file_id)
        except ValidationError:
            return None
        if not path.exists():
            return None
        exp = int(time.time()) + self.download_url_ttl
        q = urlencode({"exp": exp, "sig": self.sign_download(file_id, exp)})
        return f"{self.public_base_url}/storage/{file_id}?{q}"

    def open_signed(self, file_id: str, exp: int, sig: str) -> Optional[Path]:
        """Return the object path for a valid, unexpired download link.

        Returns ``None`` when the link is invalid, expired, or the object is gone.
        """
        if time.time() > exp:
            return None
        if not hmac.compare_digest(self.sign_download(file_id, exp), sig):
            return None
        try:
            path = self._path_for(file_id)
        except ValidationError:
            return None
        return path if path.exists() else None

    async def delete(self, file_id: str) -> None:
        path = self._path_for(file_id)
        try:
            await run_in_threadpool(path.unlink, missing_ok=True)
        except OSError as exc:
            raise BlobStoreError(str(exc), operation="delete") from exc
        logger.info("[storage] FS deleted key=%s", file_id)


class MinioBlobStore:
    """MinIO / S3 storage reached through presigned URLs."""

    backend = StorageBackend.MINIO

    def __init__(
        self,
        client: Minio,
        bucket: str,
        upload_url_ttl: int = 300,
        download_url_ttl: int = 3600,
        transfer_timeout: float = 300.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = client
        self.bucket = bucket
        self.upload_url_ttl = upload_url_ttl
        self.download_url_ttl = download_url_ttl
        self.transfer_timeout = transfer_timeout
        self._transport = transport

    def ensure_bucket(self) -> None:
        """Create the bucket if missing (idempotent, startup only)."""
        if not self._client.bucket_exists(self.bucket):
            self._client.make_bucket(self.bucket)
            logger.info("[storage] MinIO bucket created name=%s", self.bucket)

    def _key_from_url(self, url: str) -> str:
        path = urlsplit(url).path.lstrip("/")
        prefix = f"{self.bucket}/"
        return path[len(prefix):] if path.startswith(prefix) else path

    async def _exists(self, key: str, operation: str) -> bool:
        try:
            await run_in_threadpool(self._client.stat_object, self.bucket, key)
        except S3Error as exc:
            if exc.code in ("NoSuchKey", "NoSuchObject", "NotFound"):
                return False
            raise BlobStoreError(f"MinIO stat failed: {exc}", operation=operation) from exc
        except MinioException as exc:
            # ServerError / InvalidResponseError, e.g. a 5xx on HEAD
            raise BlobStoreError(f"MinIO stat failed: {exc}", operation=operation) from exc
        except urllib3.exceptions.HTTPError as exc:
            raise BlobStoreError(f"MinIO unreachable: {exc}", operation=operation) from exc
        return True

    async def create_upload_url(self) -> str:
        key = _new_object_key()
        try:
            return await run_in_threadpool(
                self._client.presigned_put_object,
                self.bucket,
                key,
                expires=timedelta(seconds=self.upload_url_ttl),
            )
        except (MinioException, urllib3.exceptions.HTTPError) as exc:
            raise BlobStoreError(f"could not presign upload: {exc}", operation="create_upload_url") from exc

    async def put_bytes(self, url: str, data: bytes, content_type: str, content_length: int) -> str:
        _check_length(data, content_length)
        key = self._key_from_url(url)
        if await self._exists(key, "put_bytes"):
            raise UploadUrlExpiredError("Upload URL already used")

        headers = {"Content-Type": content_type or "application/octet-stream", "Content-Length": str(content_length)}
        try:
            async with httpx.AsyncClient(timeout=httpx.Timeout(self.transfer_timeout), transport=self._transport) as client:
                resp = await client.put(url, content=data, headers=headers)
        except httpx.TimeoutException as exc:
            raise BlobStoreError(
                f"transfer timed out after {self.transfer_timeout:g}s", operation="put_bytes"
            ) from exc
        except httpx.HTTPError as exc:
            raise BlobStoreError(f"transfer failed: {exc}", operation="put_bytes") from exc

        if resp.status_code == 403 and "expired" in resp.text.lower():
            raise UploadUrlExpiredError("Upload URL expired")
        if resp.status_code >= 400:
            raise BlobStoreError(f"HTTP {resp.status_code} from storage", operation="put_bytes")
        logger.info("[storage] MinIO object put key=%s size=%d", key, content_length)
        return key

    async def resolve_download_url(self, file_id: str) -> Optional[str]:
        if not await self._exists(file_id, "resolve_download_url"):
            return None
        try:
            return await run_in_threadpool(
                self._client.presigned_get_object,
                self.bucket,
                file_id,
                expires=timedelta(seconds=self.download_url_ttl),
            )
        except (MinioException, urllib3.exceptions.HTTPError) as exc:
            raise BlobStoreError(f"could not presign download: {exc}", operation="resolve_download_url") from exc

    async def delete(self, file_id: str) -> None:
        # S3 DELETE on a missing key succeeds, so this is idempotent
        try:
            await run_in_threadpool(self._client.remove_object, self.bucket, file_id)
        except (MinioException, urllib3.exceptions.HTTPError) as exc:
            raise BlobStoreError(f"MinIO delete failed: {exc}", operation="delete") from exc
        logger.info("[storage] MinIO object removed key=%s", file_id)


def build_blob_store(cfg: Settings) -> BlobStore:
    """Construct the configured storage backend."""
    backend = StorageBackend((cfg.STORAGE_BACKEND or "minio").lower())
    if backend is StorageBackend.MINIO:
        store = MinioBlobStore(
            Minio(
                cfg.MINIO_ENDPOINT,
                access_key=cfg.MINIO_ACCESS_KEY,
                secret_key=cfg.MINIO_SECRET_KEY,
                secure=bool(cfg.MINIO_USE_SSL),
            ),
            bucket=cfg.MINIO_BUCKET_NAME,
            upload_url_ttl=cfg.UPLOAD_URL_TTL_SECONDS,
            download_url_ttl=cfg.DOWNLOAD_URL_TTL_SECONDS,
            transfer_timeout=cfg.UPLOAD_TIMEOUT_SECONDS,
        )
        store.ensure_bucket()
        return store
    return FilesystemBlobStore(
        cfg.STORAGE_DIRECTORY,
        secret_key=cfg.SECRET_KEY,
        upload_url_ttl=cfg.UPLOAD_URL_TTL_SECONDS,
        download_url_ttl=cfg.DOWNLOAD_URL_TTL_SECONDS,
        transfer_timeout=cfg.UPLOAD_TIMEOUT_SECONDS,
        public_base_url=cfg.PUBLIC_BASE_URL,
    )
