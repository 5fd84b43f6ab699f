"""Top-level application package for the receipt vault API.

This package contains the FastAPI backend that stores uploaded PDF
receipts, enforces per-account scan quotas and exposes the status
workflow used by the (external) extraction actor.  It includes database
models, Pydantic schemas, the storage, entitlement and repository
services, and the API routers.

To run the API locally you can execute:

```bash
uvicorn receipt_vault.api.main:app --reload
```

Configuration is read from environment variables or a ``.env`` file at
the project root; see ``receipt_vault.core.config``.
"""

__all__: list[str] = []
