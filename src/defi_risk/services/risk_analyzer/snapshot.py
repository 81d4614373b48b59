"""Operation snapshots and the staleness check.

Every asynchronous operation captures the context it started in. At each
resumption point it compares that snapshot with the live context; on any
difference the operation stops and its result is dropped. There is no
cancellation: stale work runs to the next checkpoint and is discarded.
"""

from __future__ import annotations

from dataclasses import dataclass

from defi_risk.errors import StaleOperationError


@dataclass(frozen=True, slots=True)
class OperationSnapshot:
    """Immutable capture of the context an operation runs against.

    Attributes:
        chain_id: Active network id.
        contract_address: Resolved contract address on that network.
        signer_address: Address of the active signer (None for reads).
    """

    chain_id: int | None
    contract_address: str | None
    signer_address: str | None

    def same_network(self, live: OperationSnapshot) -> bool:
        """True if network and contract are unchanged (signer ignored)."""
        return self.chain_id == live.chain_id and _same_address(
            self.contract_address, live.contract_address
        )

    def matches(self, live: OperationSnapshot) -> bool:
        """True if network, contract and signer are all unchanged."""
        return self.same_network(live) and _same_address(self.signer_address, live.signer_address)


def _same_address(a: str | None, b: str | None) -> bool:
    if a is None or b is None:
        return a is b
    return a.lower() == b.lower()


def ensure_fresh(
    snapshot: OperationSnapshot,
    live: OperationSnapshot,
    *,
    stage: str,
    network_only: bool = False,
) -> None:
    """Raise StaleOperationError if live no longer matches snapshot.

    Args:
        snapshot: Context captured when the operation started.
        live: Current context.
        stage: Resumption point name, carried in the error.
        network_only: Compare network and contract only.
    """
    fresh = snapshot.same_network(live) if network_only else snapshot.matches(live)
    if not fresh:
        raise StaleOperationError(
            f"Context changed before {stage}",
            stage=stage,
            chain_id=live.chain_id,
            address=live.contract_address,
        )
