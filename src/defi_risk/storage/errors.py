"""Storage error types."""

from __future__ import annotations

from defi_risk.errors import DefiRiskError


class StorageBackendError(DefiRiskError):
    """Raised when the storage backend cannot complete an operation.

    Indicates the backend itself failed (I/O error, corrupt document) rather
    than a logical miss, which is reported as None.
    """

    def __init__(
        self,
        message: str = "Storage backend error",
        *,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.cause = cause
