"""Signed download links for the filesystem storage backend.

``FilesystemBlobStore.resolve_download_url`` hands out
``/storage/{file_id}?exp=...&sig=...``; this route streams the object when
the HMAC signature is valid and not expired, so no Authorization header is
needed (browsers can open the link directly).  With the MinIO backend the
links point at MinIO itself and this route always answers 404.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import FileResponse

from receipt_vault.api.dependencies import get_blob_store
from receipt_vault.services.storage_service import BlobStore, FilesystemBlobStore

router = APIRouter(prefix="/storage", tags=["storage"], include_in_schema=False)


@router.get("/{file_id}")
async def download_file(
    file_id: str,
    exp: int,
    sig: str,
    blob_store: BlobStore = Depends(get_blob_store),
):
    if not isinstance(blob_store, FilesystemBlobStore):
        raise HTTPException(status_code=404, detail="File not found")
    path = blob_store.open_signed(file_id, exp, sig)
    if path is None:
        raise HTTPException(status_code=404, detail="File not found or link expired")
    return FileResponse(path=str(path), media_type="application/pdf", filename=f"{file_id}.pdf")
