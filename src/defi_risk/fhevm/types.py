"""Capability contracts for the confidential-compute runtime.

The runtime module is loaded at run time, so everything here is structural:
Protocols describe what the client calls on a connector instance, and small
pydantic models carry the values that cross that boundary.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field


class EncryptedInput(BaseModel):
    """Ciphertext handles plus the proof that binds them to contract and user.

    Attributes:
        handles: One 32-byte handle per appended value, in append order.
        input_proof: Validity proof accompanying the handles.
    """

    model_config = ConfigDict(frozen=True)

    handles: tuple[bytes, ...]
    input_proof: bytes


class Keypair(BaseModel):
    """Ephemeral key pair used to re-encrypt plaintexts for the user."""

    model_config = ConfigDict(frozen=True)

    public_key: str
    private_key: str = Field(repr=False)


class Eip712Payload(BaseModel):
    """Structured authorization message ready for typed-data signing.

    Attributes:
        domain: EIP-712 domain separator fields.
        types: Type definitions, excluding EIP712Domain.
        primary_type: Name of the signed struct.
        message: Struct values.
    """

    model_config = ConfigDict(frozen=True)

    domain: dict[str, Any]
    types: dict[str, list[dict[str, str]]]
    primary_type: str
    message: dict[str, Any]

    def signing_types(self) -> dict[str, list[dict[str, str]]]:
        """Return the type map passed to the signer (primary type only)."""
        return {self.primary_type: self.types[self.primary_type]}


@dataclass(frozen=True, slots=True)
class HandleContractPair:
    """A ciphertext handle and the contract allowed to expose it."""

    handle: str
    contract_address: str


@runtime_checkable
class EncryptedInputBuilder(Protocol):
    """Buffer collecting plaintext values before encryption."""

    def add32(self, value: int) -> EncryptedInputBuilder:
        """Append a 32-bit unsigned integer."""
        ...

    async def encrypt(self) -> EncryptedInput:
        """Encrypt all appended values and produce the input proof."""
        ...


@runtime_checkable
class FhevmInstance(Protocol):
    """Connector instance produced by the runtime for one network."""

    def create_encrypted_input(
        self, contract_address: str, user_address: str
    ) -> EncryptedInputBuilder:
        """Start an encrypted input bound to contract and user."""
        ...

    def generate_keypair(self) -> Keypair:
        """Generate an ephemeral re-encryption key pair."""
        ...

    def create_eip712(
        self,
        public_key: str,
        contract_addresses: Sequence[str],
        start_timestamp: int,
        duration_days: int,
    ) -> Eip712Payload:
        """Build the user-decrypt authorization message."""
        ...

    async def user_decrypt(
        self,
        handles: Sequence[HandleContractPair],
        private_key: str,
        public_key: str,
        signature: str,
        contract_addresses: Sequence[str],
        user_address: str,
        start_timestamp: int,
        duration_days: int,
    ) -> Mapping[str, int]:
        """Decrypt a batch of handles, keyed by handle."""
        ...


@dataclass(frozen=True, slots=True)
class BoundConnector:
    """A connector instance together with the network it was created for.

    Replaced wholesale by the lifecycle; never mutated.
    """

    chain_id: int
    provider: str
    instance: FhevmInstance
