"""User signers.

The session never touches key material directly: it asks a Signer for typed
data signatures (decryption grants) and signed transactions (analyze calls).
"""

from __future__ import annotations

import logging
from typing import Any, Protocol, runtime_checkable

from eth_account import Account
from eth_account.signers.local import LocalAccount

logger = logging.getLogger(__name__)


@runtime_checkable
class Signer(Protocol):
    """Signing capability of the connected account."""

    @property
    def address(self) -> str:
        """Checksummed account address."""
        ...

    async def sign_typed_data(
        self,
        domain: dict[str, Any],
        types: dict[str, list[dict[str, str]]],
        message: dict[str, Any],
    ) -> str:
        """Sign EIP-712 typed data and return the 0x-prefixed signature."""
        ...

    async def sign_transaction(self, transaction: dict[str, Any]) -> bytes:
        """Sign a transaction dict and return the raw signed bytes."""
        ...


class LocalAccountSigner:
    """Signer backed by an in-process eth-account LocalAccount."""

    def __init__(self, account: LocalAccount) -> None:
        self._account = account

    @classmethod
    def from_key(cls, private_key: str) -> LocalAccountSigner:
        """Build a signer from a hex private key."""
        return cls(Account.from_key(private_key))

    @property
    def address(self) -> str:
        return self._account.address

    async def sign_typed_data(
        self,
        domain: dict[str, Any],
        types: dict[str, list[dict[str, str]]],
        message: dict[str, Any],
    ) -> str:
        signed = self._account.sign_typed_data(
            domain_data=domain,
            message_types=types,
            message_data=message,
        )
        return "0x" + bytes(signed.signature).hex()

    async def sign_transaction(self, transaction: dict[str, Any]) -> bytes:
        signed = self._account.sign_transaction(transaction)
        return bytes(signed.raw_transaction)

    def __repr__(self) -> str:
        return f"LocalAccountSigner(address={self.address})"
