"""Error types for the confidential risk analyzer client.

All client failures derive from DefiRiskError. Errors carry optional chain and
address context so log lines and status messages can say where a failure
happened without leaking key material.
"""

from __future__ import annotations


class DefiRiskError(Exception):
    """Base exception for client operations.

    Attributes:
        message: Human-readable error message.
        chain_id: Network id associated with the operation (if applicable).
        address: Contract or account address associated with the operation.
    """

    def __init__(
        self,
        message: str,
        *,
        chain_id: int | None = None,
        address: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.chain_id = chain_id
        self.address = address

    def __str__(self) -> str:
        parts = [self.message]
        if self.chain_id is not None:
            parts.append(f"chain_id={self.chain_id}")
        if self.address:
            parts.append(f"address={self.address}")
        return " ".join(parts)


class ClientConfigError(DefiRiskError):
    """Raised when environment configuration is invalid."""


class DeploymentConfigError(DefiRiskError):
    """Raised when a deployments file or directory cannot be parsed."""


class UnsupportedEnvironmentError(DefiRiskError):
    """Raised when the runtime loader is used without a runtime environment."""

    def __init__(self, message: str = "ConnectorLoader: no runtime environment available") -> None:
        super().__init__(message)


class InvalidRuntimeShapeError(DefiRiskError):
    """Raised when a loaded runtime module does not expose the required surface.

    Attributes:
        reason: Which structural check failed.
    """

    def __init__(self, reason: str, *, source: str | None = None) -> None:
        message = f"Invalid confidential-compute runtime: {reason}"
        if source:
            message = f"{message} (source={source})"
        super().__init__(message)
        self.reason = reason
        self.source = source


class RuntimeLoadError(DefiRiskError):
    """Raised when the runtime module cannot be fetched or executed."""

    def __init__(self, message: str, *, cause: Exception | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class NoConnectorError(DefiRiskError):
    """Raised when a connector is required but the lifecycle is not ready."""

    def __init__(
        self,
        message: str = "Confidential-compute connector is not ready",
        *,
        chain_id: int | None = None,
    ) -> None:
        super().__init__(message, chain_id=chain_id)


class SignatureRejectedError(DefiRiskError):
    """Raised when the signer declines or fails to sign an authorization."""

    def __init__(
        self,
        message: str = "Decryption authorization was not signed",
        *,
        address: str | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message, address=address)
        self.cause = cause


class StaleOperationError(DefiRiskError):
    """Raised internally when the live context moved on during an operation.

    Never surfaced to callers as a failure: the session turns it into a
    dropped result.

    Attributes:
        stage: Resumption point at which the change was detected.
    """

    def __init__(
        self,
        message: str,
        *,
        stage: str,
        chain_id: int | None = None,
        address: str | None = None,
    ) -> None:
        super().__init__(message, chain_id=chain_id, address=address)
        self.stage = stage


class SubmissionFailureError(DefiRiskError):
    """Raised when a transaction is rejected, reverts, or fails to confirm.

    Attributes:
        tx_hash: Hash of the submitted transaction, when one exists.
    """

    def __init__(
        self,
        message: str,
        *,
        chain_id: int | None = None,
        address: str | None = None,
        tx_hash: str | None = None,
    ) -> None:
        super().__init__(message, chain_id=chain_id, address=address)
        self.tx_hash = tx_hash


class DecryptionFailureError(DefiRiskError):
    """Raised when a batched decrypt fails or returns an incomplete set.

    Attributes:
        missing_handles: Requested handles with no usable plaintext in the response.
    """

    def __init__(
        self,
        message: str,
        *,
        address: str | None = None,
        missing_handles: tuple[str, ...] = (),
    ) -> None:
        super().__init__(message, address=address)
        self.missing_handles = missing_handles


class ProtocolUnsupportedError(DefiRiskError):
    """Raised when the contract reports an unsupported confidential protocol."""

    def __init__(
        self,
        message: str = "Contract reports ZamaProtocolUnsupported",
        *,
        chain_id: int | None = None,
        address: str | None = None,
    ) -> None:
        super().__init__(message, chain_id=chain_id, address=address)
