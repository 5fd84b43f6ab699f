"""Error taxonomy for the receipt lifecycle.

Service code raises these; the API layer maps them to HTTP responses in
``receipt_vault.api.error_handlers``.  Anything that is not a
``ReceiptVaultError`` is treated as an internal error.
"""

from __future__ import annotations

from typing import Optional


class ReceiptVaultError(Exception):
    """Base class for domain errors."""

    status_code: int = 500
    error: str = "Internal server error"


class ConfigurationError(RuntimeError):
    """Process configuration is unusable; raised at startup only."""


class UnauthenticatedError(ReceiptVaultError):
    status_code = 401
    error = "Not authenticated"

    def __init__(self, message: str = "Not authenticated") -> None:
        super().__init__(message)


class UnauthorizedError(ReceiptVaultError):
    status_code = 403
    error = "Not authorized"

    def __init__(self, message: str = "Not authorized to access this receipt") -> None:
        super().__init__(message)


class NotFoundError(ReceiptVaultError):
    status_code = 404
    error = "Not found"

    def __init__(self, message: str = "Receipt not found") -> None:
        super().__init__(message)


class ValidationError(ReceiptVaultError):
    status_code = 400
    error = "Validation error"


class InvalidStatusTransitionError(ValidationError):
    def __init__(self, current: str, requested: str) -> None:
        super().__init__(f"Cannot move receipt from '{current}' to '{requested}'")
        self.current = current
        self.requested = requested


class TransientIOError(ReceiptVaultError):
    """Failure talking to an external service; safe for the caller to retry."""

    status_code = 503
    error = "Service unavailable"

    def __init__(self, message: str, operation: str, receipt_id: Optional[int] = None) -> None:
        self.operation = operation
        self.receipt_id = receipt_id
        context = f"{operation}" if receipt_id is None else f"{operation} receipt_id={receipt_id}"
        super().__init__(f"{context}: {message}")


class BlobStoreError(TransientIOError):
    pass


class UploadUrlExpiredError(BlobStoreError):
    def __init__(self, message: str = "Upload URL expired or already used") -> None:
        super().__init__(message, operation="put_bytes")


class EntitlementServiceError(TransientIOError):
    pass


class ConcurrentModificationError(TransientIOError):
    def __init__(self, operation: str, receipt_id: int) -> None:
        super().__init__("receipt was modified concurrently", operation=operation, receipt_id=receipt_id)


class OrphanResourceError(ReceiptVaultError):
    """A receipt and its file went out of sync and need reconciliation."""

    status_code = 500
    error = "Reconciliation required"

    def __init__(self, message: str, receipt_id: int, file_id: str) -> None:
        self.receipt_id = receipt_id
        self.file_id = file_id
        super().__init__(message)


def quota_exceeded_message(allocation: Optional[int]) -> str:
    if allocation is None:
        return "You have exceeded your monthly scan limit. Please upgrade your plan to continue."
    return (
        f"You have exceeded your monthly scan limit of {allocation}. "
        "Please upgrade your plan to continue."
    )


__all__ = [
    "ReceiptVaultError",
    "ConfigurationError",
    "UnauthenticatedError",
    "UnauthorizedError",
    "NotFoundError",
    "ValidationError",
    "InvalidStatusTransitionError",
    "TransientIOError",
    "BlobStoreError",
    "UploadUrlExpiredError",
    "EntitlementServiceError",
    "ConcurrentModificationError",
    "OrphanResourceError",
    "quota_exceeded_message",
]
