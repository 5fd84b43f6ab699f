"""Enumeration types used throughout the receipt vault API.

When modifying these enums you should update the transition table in
``receipt_vault.services.receipt_repository`` so that new values are
reachable.
"""

from enum import Enum


class ReceiptStatus(str, Enum):
    """Lifecycle states for a receipt."""

    PENDING = "pending"
    PROCESSED = "processed"
    FAILED = "failed"


class StorageBackend(str, Enum):
    MINIO = "minio"
    FILESYSTEM = "filesystem"


class EntitlementBackend(str, Enum):
    SCHEMATIC = "schematic"
    LOCAL = "local"
