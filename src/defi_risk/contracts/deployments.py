"""Deployment resolution: network id -> contract address.

A missing entry or a zero address means "not deployed on this network". That
is an ordinary state the session exposes, never an exception.

Sources:
- Addresses JSON: {"31337": {"address": "0x..", "chainId": 31337, "chainName": "hardhat"}}
- hardhat-deploy directory: deployments/<network>/<Contract>.json
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Final

from web3 import Web3

from defi_risk.contracts.abi import CONTRACT_NAME
from defi_risk.errors import DeploymentConfigError

logger = logging.getLogger(__name__)

ZERO_ADDRESS: Final[str] = "0x0000000000000000000000000000000000000000"

# hardhat-deploy network directory -> (chain id, chain name)
HARDHAT_NETWORKS: Final[dict[str, tuple[int, str]]] = {
    "localhost": (31337, "hardhat"),
    "sepolia": (11155111, "sepolia"),
}


@dataclass(frozen=True, slots=True)
class ContractDeployment:
    """Where the contract lives on one network.

    Attributes:
        chain_id: Network id (None when no network is selected).
        address: Checksummed address, or None when not deployed.
        chain_name: Human-readable network name, when known.
    """

    chain_id: int | None
    address: str | None = None
    chain_name: str | None = None

    @property
    def is_deployed(self) -> bool:
        return self.address is not None


def normalize_address(address: str | None) -> str | None:
    """Checksum address; None for empty or zero addresses.

    Raises:
        DeploymentConfigError: If address is not a valid hex address.
    """
    if not address:
        return None
    if not Web3.is_address(address):
        raise DeploymentConfigError(f"Invalid contract address: {address!r}")
    checksummed = Web3.to_checksum_address(address)
    if checksummed == ZERO_ADDRESS:
        return None
    return checksummed


@dataclass
class DeploymentBook:
    """Known deployments keyed by chain id."""

    _entries: dict[int, ContractDeployment] = field(default_factory=dict)

    @classmethod
    def from_entries(cls, entries: Iterable[ContractDeployment]) -> DeploymentBook:
        book = cls()
        for entry in entries:
            book.add(entry)
        return book

    def add(self, deployment: ContractDeployment) -> None:
        if deployment.chain_id is None:
            raise DeploymentConfigError("Deployment entry requires a chain id")
        self._entries[deployment.chain_id] = deployment

    def resolve(self, chain_id: int | None) -> ContractDeployment:
        """Return the deployment for chain_id, or a not-deployed placeholder."""
        if chain_id is None:
            return ContractDeployment(chain_id=None)
        entry = self._entries.get(chain_id)
        if entry is None:
            return ContractDeployment(chain_id=chain_id)
        return entry

    @property
    def chain_ids(self) -> frozenset[int]:
        return frozenset(self._entries)


def _entry_from_mapping(key: str, raw: Any) -> ContractDeployment:
    if not isinstance(raw, dict):
        raise DeploymentConfigError(f"Deployment entry {key!r} must be an object")
    try:
        chain_id = int(raw.get("chainId", key))
    except (TypeError, ValueError) as e:
        raise DeploymentConfigError(f"Deployment entry {key!r} has an invalid chainId") from e
    return ContractDeployment(
        chain_id=chain_id,
        address=normalize_address(raw.get("address")),
        chain_name=raw.get("chainName"),
    )


def load_addresses_file(path: Path) -> DeploymentBook:
    """Load a book from an addresses JSON document.

    Raises:
        DeploymentConfigError: If the file is unreadable or malformed.
    """
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise DeploymentConfigError(f"Cannot read deployments file {path}") from e
    except json.JSONDecodeError as e:
        raise DeploymentConfigError(f"Invalid JSON in deployments file {path}: {e}") from e

    if not isinstance(data, dict):
        raise DeploymentConfigError(f"Deployments file {path} must contain an object")

    return DeploymentBook.from_entries(_entry_from_mapping(k, v) for k, v in data.items())


def load_hardhat_deployments(
    deployments_dir: Path,
    contract_name: str = CONTRACT_NAME,
) -> DeploymentBook:
    """Load a book from a hardhat-deploy ``deployments/`` directory.

    Networks without a deployment file are skipped.

    Raises:
        DeploymentConfigError: If a present deployment file is malformed.
    """
    book = DeploymentBook()
    for network_dir, (chain_id, chain_name) in HARDHAT_NETWORKS.items():
        deployment_file = deployments_dir / network_dir / f"{contract_name}.json"
        if not deployment_file.exists():
            logger.debug("No %s deployment for %s", contract_name, network_dir)
            continue
        try:
            data = json.loads(deployment_file.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise DeploymentConfigError(f"Cannot parse {deployment_file}: {e}") from e
        if not isinstance(data, dict):
            raise DeploymentConfigError(f"{deployment_file} must contain an object")
        book.add(
            ContractDeployment(
                chain_id=chain_id,
                address=normalize_address(data.get("address")),
                chain_name=chain_name,
            )
        )
    return book


def load_deployments(path: Path | None) -> DeploymentBook:
    """Load deployments from a directory or addresses file; empty book for None."""
    if path is None:
        return DeploymentBook()
    if path.is_dir():
        return load_hardhat_deployments(path)
    return load_addresses_file(path)
