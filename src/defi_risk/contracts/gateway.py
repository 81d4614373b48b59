"""Contract gateway for DeFiRiskAnalyzer.

RiskAnalyzerGateway is the surface the session depends on; the web3.py
implementation talks to a JSON-RPC node. Transactions are built here and
signed by the user's Signer, so the gateway never holds key material.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Final, Protocol, runtime_checkable

from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.exceptions import ContractCustomError, TimeExhausted, Web3Exception

from defi_risk.contracts.abi import PROTOCOL_UNSUPPORTED_ERROR, RISK_ANALYZER_ABI
from defi_risk.errors import ProtocolUnsupportedError, SubmissionFailureError
from defi_risk.services.risk_analyzer.models import ResultHandles
from defi_risk.signers import Signer

logger = logging.getLogger(__name__)

PROTOCOL_UNSUPPORTED_SELECTOR: Final[str] = Web3.to_hex(
    Web3.keccak(text=PROTOCOL_UNSUPPORTED_ERROR)[:4]
)
DEFAULT_RECEIPT_TIMEOUT_SECONDS: Final[float] = 120.0


@dataclass(frozen=True, slots=True)
class TransactionOutcome:
    """Confirmation of a mined transaction.

    Attributes:
        tx_hash: 0x-prefixed transaction hash.
        status: 1 on success, 0 when reverted.
        block_number: Block the transaction was mined in.
    """

    tx_hash: str
    status: int
    block_number: int | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == 1


@runtime_checkable
class RiskAnalyzerGateway(Protocol):
    """Read and write calls against one network's DeFiRiskAnalyzer."""

    async def get_all(self, address: str) -> ResultHandles:
        """Return the five result handles."""
        ...

    async def get_risk_score(self, address: str) -> str:
        """Return the risk score handle."""
        ...

    async def get_risk_level(self, address: str) -> str:
        """Return the risk level handle."""
        ...

    async def get_recommendations(self, address: str) -> tuple[str, str, str]:
        """Return the stable, bluechip and high-risk handles."""
        ...

    async def confidential_protocol_id(self, address: str) -> int:
        """Return the id of the confidential protocol backing the contract."""
        ...

    async def submit_analyze(
        self,
        address: str,
        signer: Signer,
        cipher_assets: bytes,
        cipher_risk_pref: bytes,
        cipher_position_vol: bytes,
        input_proof: bytes,
    ) -> str:
        """Sign and send analyze(...), returning the transaction hash."""
        ...

    async def wait_for_receipt(self, tx_hash: str) -> TransactionOutcome:
        """Wait until tx_hash is mined."""
        ...


def is_protocol_unsupported(exc: ContractCustomError) -> bool:
    """True if a custom revert carries the ZamaProtocolUnsupported selector."""
    data = getattr(exc, "data", None) or (exc.args[0] if exc.args else "")
    return str(data).lower().startswith(PROTOCOL_UNSUPPORTED_SELECTOR)


class Web3RiskAnalyzerGateway:
    """RiskAnalyzerGateway over a web3.py AsyncWeb3 connection."""

    def __init__(
        self,
        w3: AsyncWeb3,
        *,
        chain_id: int,
        receipt_timeout_seconds: float = DEFAULT_RECEIPT_TIMEOUT_SECONDS,
    ) -> None:
        """Initialize the gateway.

        Args:
            w3: Async web3 connection for the target network.
            chain_id: Network id, stamped into built transactions.
            receipt_timeout_seconds: How long wait_for_receipt waits.
        """
        self._w3 = w3
        self._chain_id = chain_id
        self._receipt_timeout_seconds = receipt_timeout_seconds

    @classmethod
    def from_rpc_url(
        cls,
        rpc_url: str,
        *,
        chain_id: int,
        timeout_seconds: float = 30.0,
    ) -> Web3RiskAnalyzerGateway:
        provider = AsyncHTTPProvider(rpc_url, request_kwargs={"timeout": timeout_seconds})
        return cls(AsyncWeb3(provider), chain_id=chain_id)

    def _contract(self, address: str) -> Any:
        return self._w3.eth.contract(
            address=Web3.to_checksum_address(address),
            abi=RISK_ANALYZER_ABI,
        )

    async def _call(self, address: str, function_name: str) -> Any:
        function = getattr(self._contract(address).functions, function_name)
        try:
            return await function().call()
        except ContractCustomError as exc:
            if is_protocol_unsupported(exc):
                raise ProtocolUnsupportedError(chain_id=self._chain_id, address=address) from exc
            raise

    async def get_all(self, address: str) -> ResultHandles:
        raw = await self._call(address, "getAll")
        return ResultHandles.from_sequence(list(raw))

    async def get_risk_score(self, address: str) -> str:
        return Web3.to_hex(await self._call(address, "getRiskScore"))

    async def get_risk_level(self, address: str) -> str:
        return Web3.to_hex(await self._call(address, "getRiskLevel"))

    async def get_recommendations(self, address: str) -> tuple[str, str, str]:
        stable, bluechip, high_risk = await self._call(address, "getRecommendations")
        return Web3.to_hex(stable), Web3.to_hex(bluechip), Web3.to_hex(high_risk)

    async def confidential_protocol_id(self, address: str) -> int:
        return int(await self._call(address, "confidentialProtocolId"))

    async def submit_analyze(
        self,
        address: str,
        signer: Signer,
        cipher_assets: bytes,
        cipher_risk_pref: bytes,
        cipher_position_vol: bytes,
        input_proof: bytes,
    ) -> str:
        """Build, sign and broadcast analyze(...).

        Raises:
            ProtocolUnsupportedError: If gas estimation hits ZamaProtocolUnsupported.
            SubmissionFailureError: If the node rejects the transaction.
        """
        function = self._contract(address).functions.analyze(
            cipher_assets, cipher_risk_pref, cipher_position_vol, input_proof
        )
        try:
            nonce = await self._w3.eth.get_transaction_count(signer.address)
            transaction = await function.build_transaction(
                {"from": signer.address, "nonce": nonce, "chainId": self._chain_id}
            )
            raw_transaction = await signer.sign_transaction(transaction)
            tx_hash = await self._w3.eth.send_raw_transaction(raw_transaction)
        except ContractCustomError as exc:
            if is_protocol_unsupported(exc):
                raise ProtocolUnsupportedError(chain_id=self._chain_id, address=address) from exc
            raise SubmissionFailureError(
                f"analyze reverted: {exc}", chain_id=self._chain_id, address=address
            ) from exc
        except (Web3Exception, ValueError) as exc:
            raise SubmissionFailureError(
                f"analyze submission failed: {exc}", chain_id=self._chain_id, address=address
            ) from exc

        tx_hex = Web3.to_hex(tx_hash)
        logger.info("Submitted analyze tx %s to %s", tx_hex, address)
        return tx_hex

    async def wait_for_receipt(self, tx_hash: str) -> TransactionOutcome:
        """Wait for tx_hash to be mined.

        Raises:
            SubmissionFailureError: If the receipt does not arrive in time.
        """
        try:
            receipt = await self._w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self._receipt_timeout_seconds
            )
        except TimeExhausted as exc:
            raise SubmissionFailureError(
                f"Transaction {tx_hash} not confirmed within "
                f"{self._receipt_timeout_seconds:.0f}s",
                chain_id=self._chain_id,
                tx_hash=tx_hash,
            ) from exc
        return TransactionOutcome(
            tx_hash=tx_hash,
            status=int(receipt["status"]),
            block_number=receipt.get("blockNumber"),
        )
