"""Risk analyzer session: the client-side orchestrator.

Coordinates the three user operations against the live wallet context:

- refresh(): read the five encrypted result handles
- analyze(): encrypt three inputs and submit them to the contract
- decrypt_all(): obtain a decryption grant and decrypt all five handles

A single busy flag serializes the operations; a call arriving while busy is
a no-op, never queued. Each operation snapshots (network, contract, signer)
when it starts and re-checks it at every resumption point; if the context
moved on, the result is dropped instead of committed. Handles and clear
results are only ever replaced whole.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Final

from defi_risk.contracts.deployments import ContractDeployment, DeploymentBook
from defi_risk.errors import (
    DecryptionFailureError,
    DefiRiskError,
    NoConnectorError,
    SignatureRejectedError,
    StaleOperationError,
    SubmissionFailureError,
)
from defi_risk.fhevm.decryption_grant import GrantPolicy, load_or_sign
from defi_risk.fhevm.lifecycle import ConnectorLifecycle
from defi_risk.fhevm.types import FhevmInstance, HandleContractPair
from defi_risk.observability.tracing import traced_operation
from defi_risk.services.risk_analyzer.models import RESULT_FIELDS, ClearResult, ResultHandles
from defi_risk.services.risk_analyzer.snapshot import OperationSnapshot, ensure_fresh
from defi_risk.signers import Signer
from defi_risk.storage import StringStorage

if TYPE_CHECKING:
    from defi_risk.contracts.gateway import RiskAnalyzerGateway

logger = logging.getLogger(__name__)

GatewayFactory = Callable[[str, int], "RiskAnalyzerGateway"]

UINT32_MAX: Final[int] = 2**32 - 1

STAGE_HANDLE_COMMIT: Final[str] = "refresh.commit"
STAGE_ANALYZE_SUBMIT: Final[str] = "analyze.submit"
STAGE_ANALYZE_REFRESH: Final[str] = "analyze.refresh"
STAGE_DECRYPT_REQUEST: Final[str] = "decrypt.request"
STAGE_DECRYPT_COMMIT: Final[str] = "decrypt.commit"

_STALE_MESSAGES: Final[dict[str, str]] = {
    STAGE_HANDLE_COMMIT: "",
    STAGE_ANALYZE_SUBMIT: "Ignore analyze (stale)",
    STAGE_ANALYZE_REFRESH: "Ignore refresh (stale)",
    STAGE_DECRYPT_REQUEST: "Ignore decryption (stale)",
    STAGE_DECRYPT_COMMIT: "Ignore decrypted results (stale)",
}


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _describe(exc: Exception) -> str:
    if isinstance(exc, DefiRiskError):
        return exc.message
    return str(exc) or type(exc).__name__


def _is_filled(value: Any) -> bool:
    return value is not None and str(value).strip() != ""


def parse_uint32(name: str, value: int | str) -> int:
    """Parse a user input as a 32-bit unsigned integer.

    Raises:
        ValueError: If value is not an integer in [0, 2**32).
    """
    if isinstance(value, bool):
        raise ValueError(f"{name} must be an integer")
    if isinstance(value, int):
        parsed = value
    else:
        try:
            parsed = int(str(value).strip())
        except ValueError as e:
            raise ValueError(f"{name} must be an integer, got {value!r}") from e
    if not 0 <= parsed <= UINT32_MAX:
        raise ValueError(f"{name} must be between 0 and {UINT32_MAX}, got {parsed}")
    return parsed


def decode_clear_result(
    handles: ResultHandles,
    response: Mapping[str, Any],
    *,
    contract_address: str,
) -> ClearResult:
    """Build a ClearResult from one batched decrypt response.

    Raises:
        DecryptionFailureError: If any requested handle has no integer plaintext.
    """
    by_handle = {str(k).lower(): v for k, v in response.items()}
    values: dict[str, int] = {}
    missing: list[str] = []
    for name, handle in zip(RESULT_FIELDS, handles.as_tuple(), strict=True):
        value = by_handle.get(handle.lower())
        if isinstance(value, bool) or not isinstance(value, int):
            missing.append(handle)
            continue
        values[name] = value

    if missing:
        raise DecryptionFailureError(
            f"Decrypt response is missing {len(missing)} of {len(RESULT_FIELDS)} values",
            address=contract_address,
            missing_handles=tuple(missing),
        )
    return ClearResult(**values)


class RiskAnalyzerSession:
    """Orchestrates refresh, analyze and decrypt against the live context."""

    def __init__(
        self,
        *,
        lifecycle: ConnectorLifecycle,
        deployments: DeploymentBook,
        gateway_factory: GatewayFactory,
        grant_storage: StringStorage,
        grant_policy: GrantPolicy | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        """Initialize a session with no wallet connected.

        Args:
            lifecycle: Connector lifecycle (owned by the session from now on).
            deployments: Contract deployments by network.
            gateway_factory: Builds a contract gateway for (provider, chain_id).
            grant_storage: Store for decryption grants.
            grant_policy: Issuance policy for new grants.
            clock: Time source for grant validity (injectable for tests).
        """
        self._lifecycle = lifecycle
        self._deployments = deployments
        self._gateway_factory = gateway_factory
        self._grant_storage = grant_storage
        self._grant_policy = grant_policy or GrantPolicy()
        self._clock = clock

        self._provider: str | None = None
        self._chain_id: int | None = None
        self._signer: Signer | None = None
        self._deployment: ContractDeployment = deployments.resolve(None)
        self._gateway: RiskAnalyzerGateway | None = None

        self._handles: ResultHandles | None = None
        self._clear: ClearResult | None = None
        self._busy = False
        self._refresh_pending = False
        self._message = ""

    # -- live context -------------------------------------------------------

    @property
    def chain_id(self) -> int | None:
        return self._chain_id

    @property
    def provider(self) -> str | None:
        return self._provider

    @property
    def signer(self) -> Signer | None:
        return self._signer

    @property
    def deployment(self) -> ContractDeployment:
        return self._deployment

    @property
    def contract_address(self) -> str | None:
        return self._deployment.address

    @property
    def is_deployed(self) -> bool | None:
        """None until a network is selected, then whether the contract exists there."""
        if self._chain_id is None:
            return None
        return self._deployment.is_deployed

    @property
    def lifecycle(self) -> ConnectorLifecycle:
        return self._lifecycle

    @property
    def connector(self) -> FhevmInstance | None:
        return self._lifecycle.connector_for(self._chain_id)

    def live_snapshot(self) -> OperationSnapshot:
        return OperationSnapshot(
            chain_id=self._chain_id,
            contract_address=self.contract_address,
            signer_address=self._signer.address if self._signer is not None else None,
        )

    async def switch_wallet(
        self,
        *,
        provider: str | None,
        chain_id: int | None,
        signer: Signer | None,
    ) -> None:
        """Apply a new wallet context.

        The live context changes immediately, so in-flight operations see
        the switch at their next checkpoint. On a network or provider change
        the previous network's handles are dropped, the connector is
        recreated and the handles are re-read. If an operation holds the busy
        flag, the re-read runs as soon as that operation finishes.
        """
        network_changed = (provider, chain_id) != (self._provider, self._chain_id)
        self._provider = provider
        self._chain_id = chain_id
        self._signer = signer
        self._deployment = self._deployments.resolve(chain_id)

        if not network_changed:
            return

        logger.info(
            "Wallet context changed: chain_id=%s deployed=%s",
            chain_id,
            self._deployment.is_deployed,
        )
        if provider is not None and chain_id is not None:
            self._gateway = self._gateway_factory(provider, chain_id)
        else:
            self._gateway = None

        self._handles = None
        self._refresh_pending = True
        await self._lifecycle.configure(provider, chain_id)
        await self.refresh()

    # -- observable state ---------------------------------------------------

    @property
    def is_busy(self) -> bool:
        return self._busy

    @property
    def message(self) -> str:
        return self._message

    @property
    def handles(self) -> ResultHandles | None:
        return self._handles

    @property
    def clear(self) -> ClearResult | None:
        return self._clear

    @property
    def can_get(self) -> bool:
        return self.contract_address is not None and self._gateway is not None and not self._busy

    @property
    def can_decrypt(self) -> bool:
        return (
            self.contract_address is not None
            and self.connector is not None
            and self._signer is not None
            and not self._busy
            and self._handles is not None
            and self._handles.is_populated
        )

    def can_analyze(
        self,
        assets: int | str | None,
        risk_preference: int | str | None,
        position_volatility: int | str | None,
    ) -> bool:
        return (
            self.contract_address is not None
            and self.connector is not None
            and self._signer is not None
            and self._gateway is not None
            and not self._busy
            and all(_is_filled(v) for v in (assets, risk_preference, position_volatility))
        )

    def describe(self) -> dict[str, Any]:
        """Return a JSON-ready view of the session state."""
        return {
            "chain_id": self._chain_id,
            "chain_name": self._deployment.chain_name,
            "contract_address": self.contract_address,
            "is_deployed": self.is_deployed,
            "signer_address": self._signer.address if self._signer is not None else None,
            "connector_status": self._lifecycle.status.value,
            "connector_status_text": self._lifecycle.status_text,
            "is_busy": self._busy,
            "message": self._message,
            "handles": self._handles.model_dump() if self._handles is not None else None,
            "clear": (
                {**self._clear.model_dump(), "risk_level_label": self._clear.risk_level_label}
                if self._clear is not None
                else None
            ),
        }

    # -- busy flag ----------------------------------------------------------

    def _try_acquire(self, operation: str) -> bool:
        if self._busy:
            logger.debug("Ignoring %s: another operation is in flight", operation)
            return False
        self._busy = True
        return True

    def _release(self) -> None:
        self._busy = False

    async def _refresh_if_pending(self) -> None:
        # a network change while busy skipped its re-read
        if self._refresh_pending:
            await self.refresh()

    def _checkpoint(self, snapshot: OperationSnapshot, stage: str, *, network_only: bool = False) -> None:
        ensure_fresh(snapshot, self.live_snapshot(), stage=stage, network_only=network_only)

    def _on_stale(self, exc: StaleOperationError) -> None:
        logger.info("Dropping stale result at %s (chain_id now %s)", exc.stage, exc.chain_id)
        message = _STALE_MESSAGES.get(exc.stage, "")
        if message:
            self._message = message

    # -- operations ---------------------------------------------------------

    @traced_operation("refresh")
    async def refresh(self) -> None:
        """Re-read the five result handles for the current network.

        No-op while busy. Clears the handles when no contract is deployed or
        no provider is connected.
        """
        if self._busy:
            logger.debug("Ignoring refresh: another operation is in flight")
            return
        self._refresh_pending = False

        address = self.contract_address
        gateway = self._gateway
        if address is None or gateway is None:
            self._handles = None
            return

        self._busy = True
        snapshot = self.live_snapshot()
        try:
            handles = await gateway.get_all(address)
            self._checkpoint(snapshot, STAGE_HANDLE_COMMIT, network_only=True)
            self._handles = handles
            logger.debug("Refreshed result handles for %s", address)
        except StaleOperationError as exc:
            self._on_stale(exc)
        except Exception as exc:
            logger.warning("Refresh failed for %s: %s", address, exc)
            self._message = f"Refresh failed: {_describe(exc)}"
        finally:
            self._release()

        await self._refresh_if_pending()

    @traced_operation("analyze")
    async def analyze(
        self,
        assets: int | str,
        risk_preference: int | str,
        position_volatility: int | str,
    ) -> None:
        """Encrypt the three inputs and submit them to analyze(...).

        Values are appended as 32-bit unsigned integers in declared order.
        After confirmation the handles are refreshed, unless the context
        changed in the meantime. Failures set message and commit nothing.
        """
        address = self.contract_address
        connector = self.connector
        signer = self._signer
        gateway = self._gateway
        if address is None or connector is None or signer is None or gateway is None:
            logger.debug("Ignoring analyze: session not ready")
            return
        if not all(_is_filled(v) for v in (assets, risk_preference, position_volatility)):
            logger.debug("Ignoring analyze: missing input")
            return
        if not self._try_acquire("analyze"):
            return

        snapshot = self.live_snapshot()
        confirmed = False
        self._message = "Encrypt inputs..."
        try:
            values = (
                parse_uint32("assets", assets),
                parse_uint32("risk preference", risk_preference),
                parse_uint32("position volatility", position_volatility),
            )
            builder = connector.create_encrypted_input(address, signer.address)
            for value in values:
                builder.add32(value)
            encrypted = await builder.encrypt()
            if len(encrypted.handles) != len(values):
                raise SubmissionFailureError(
                    f"Encryption produced {len(encrypted.handles)} handles, expected {len(values)}",
                    chain_id=snapshot.chain_id,
                    address=address,
                )

            self._checkpoint(snapshot, STAGE_ANALYZE_SUBMIT)

            self._message = "Send transaction analyze(...)"
            cipher_assets, cipher_risk_pref, cipher_position_vol = encrypted.handles
            tx_hash = await gateway.submit_analyze(
                address,
                signer,
                cipher_assets,
                cipher_risk_pref,
                cipher_position_vol,
                encrypted.input_proof,
            )

            self._message = "Waiting for transaction confirmation..."
            outcome = await gateway.wait_for_receipt(tx_hash)
            if not outcome.succeeded:
                raise SubmissionFailureError(
                    "Transaction reverted",
                    chain_id=snapshot.chain_id,
                    address=address,
                    tx_hash=tx_hash,
                )
            self._message = "Analysis completed successfully. Refreshing data..."

            self._checkpoint(snapshot, STAGE_ANALYZE_REFRESH)
            confirmed = True
        except StaleOperationError as exc:
            self._on_stale(exc)
        except Exception as exc:
            logger.warning("Analyze failed on chain_id=%s: %s", snapshot.chain_id, exc)
            self._message = f"Analyze failed: {_describe(exc)}"
        finally:
            self._release()

        if confirmed or self._refresh_pending:
            await self.refresh()

    @traced_operation("decrypt_all")
    async def decrypt_all(self) -> None:
        """Decrypt all five result handles in one batch.

        The new ClearResult replaces the previous one whole, and only if
        network, contract and signer are unchanged when the response arrives.
        """
        address = self.contract_address
        connector = self.connector
        signer = self._signer
        handles = self._handles
        chain_id = self._chain_id
        if address is None or connector is None or signer is None or chain_id is None:
            logger.debug("Ignoring decrypt: session not ready")
            return
        if handles is None or not handles.is_populated:
            logger.debug("Ignoring decrypt: result handles not populated")
            return
        if not self._try_acquire("decrypt"):
            return

        snapshot = self.live_snapshot()
        self._message = "Start decrypt..."
        try:
            grant = await load_or_sign(
                connector,
                [address],
                signer,
                self._grant_storage,
                chain_id=chain_id,
                policy=self._grant_policy,
                clock=self._clock,
            )

            self._checkpoint(snapshot, STAGE_DECRYPT_REQUEST)

            self._message = "Call FHEVM userDecrypt..."
            pairs = [HandleContractPair(handle=h, contract_address=address) for h in handles.as_tuple()]
            try:
                response = await connector.user_decrypt(
                    pairs,
                    grant.private_key,
                    grant.public_key,
                    grant.signature,
                    list(grant.contract_addresses),
                    grant.user_address,
                    grant.start_timestamp,
                    grant.duration_days,
                )
            except Exception as exc:
                raise DecryptionFailureError(
                    f"userDecrypt failed: {exc}", address=address
                ) from exc

            self._checkpoint(snapshot, STAGE_DECRYPT_COMMIT)

            self._clear = decode_clear_result(handles, response, contract_address=address)
            self._message = "Decryption completed."
            logger.info("Decrypted %d result values for %s", len(RESULT_FIELDS), address)
        except StaleOperationError as exc:
            self._on_stale(exc)
        except (SignatureRejectedError, NoConnectorError) as exc:
            logger.warning("Decryption grant unavailable for %s: %s", signer.address, exc)
            self._message = "Unable to build FHEVM decryption signature"
        except Exception as exc:
            logger.warning("Decrypt failed for %s: %s", address, exc)
            self._message = f"Decrypt failed: {_describe(exc)}"
        finally:
            self._release()

        await self._refresh_if_pending()
