"""Key/value string storage for decryption grants.

Backends:
- InMemoryStringStorage: process-local (default)
- JsonFileStringStorage: JSON document on disk

Environment Variables:
    DEFI_RISK_GRANT_STORE_PATH: Path of the JSON document used by the CLI
        (default: in-memory storage)
"""

from defi_risk.storage.errors import StorageBackendError
from defi_risk.storage.string_store import (
    InMemoryStringStorage,
    JsonFileStringStorage,
    StringStorage,
)

__all__ = [
    "StringStorage",
    "InMemoryStringStorage",
    "JsonFileStringStorage",
    "StorageBackendError",
]
