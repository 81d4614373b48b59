"""Decryption grant issuance and caching.

A grant authorizes the holder of an ephemeral key pair to decrypt ciphertexts
of a set of contracts on behalf of one user, for a bounded number of days. It
is produced by having the user sign an EIP-712 message, which is the slow,
interactive part, so grants are cached in a StringStorage and reused while
they remain valid.

Storage keys are SHA256 hashes of canonical JSON containing
(chain_id, sorted contract addresses, lower-cased user address), so switching
account or network never picks up another context's grant.
"""

from __future__ import annotations

import hashlib
import json
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Final

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from defi_risk.errors import NoConnectorError, SignatureRejectedError
from defi_risk.fhevm.types import FhevmInstance
from defi_risk.signers import Signer
from defi_risk.storage import StringStorage

logger = logging.getLogger(__name__)

GRANT_KEY_PREFIX: Final[str] = "decryption-grant:"
SECONDS_PER_DAY: Final[int] = 86400
DEFAULT_VALIDITY_DAYS: Final[int] = 365

Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class GrantPolicy:
    """Issuance policy for new grants.

    Attributes:
        validity_days: Lifetime of a freshly signed grant, in days.
    """

    validity_days: int = DEFAULT_VALIDITY_DAYS

    def __post_init__(self) -> None:
        if self.validity_days <= 0:
            raise ValueError(f"validity_days must be positive, got {self.validity_days}")


class DecryptionGrant(BaseModel):
    """A signed, time-bounded user-decrypt authorization.

    Attributes:
        public_key: Ephemeral public key the plaintexts are re-encrypted to.
        private_key: Matching ephemeral private key (never logged).
        signature: User signature over the EIP-712 authorization.
        contract_addresses: Sorted contract addresses the grant covers.
        user_address: Address of the signing user.
        start_timestamp: Issue time, seconds since epoch.
        duration_days: Validity window in days.
    """

    model_config = ConfigDict(frozen=True)

    public_key: str
    private_key: str = Field(repr=False)
    signature: str = Field(repr=False)
    contract_addresses: tuple[str, ...]
    user_address: str
    start_timestamp: int
    duration_days: int = Field(gt=0)

    @property
    def expires_at_timestamp(self) -> int:
        return self.start_timestamp + self.duration_days * SECONDS_PER_DAY

    def is_valid_at(self, now: datetime) -> bool:
        """True while now <= start_timestamp + duration_days."""
        return int(now.timestamp()) <= self.expires_at_timestamp

    def covers(self, contract_addresses: Iterable[str]) -> bool:
        """True if every requested address is in the grant's address set."""
        granted = {a.lower() for a in self.contract_addresses}
        return all(a.lower() in granted for a in contract_addresses)

    def is_usable(
        self,
        *,
        user_address: str,
        contract_addresses: Iterable[str],
        now: datetime,
    ) -> bool:
        """All three validity conditions: unexpired, same user, covers targets."""
        return (
            self.is_valid_at(now)
            and self.user_address.lower() == user_address.lower()
            and self.covers(contract_addresses)
        )


def normalize_addresses(contract_addresses: Iterable[str]) -> tuple[str, ...]:
    """Deduplicate (case-insensitively) and sort contract addresses."""
    unique: dict[str, str] = {}
    for address in contract_addresses:
        unique.setdefault(address.lower(), address)
    return tuple(unique[k] for k in sorted(unique))


def compute_grant_key(
    *,
    chain_id: int,
    contract_addresses: Iterable[str],
    user_address: str,
) -> str:
    """Compute the deterministic storage key for a grant.

    Address order and case do not affect the key.
    """
    canonical = {
        "chain_id": chain_id,
        "contract_addresses": sorted({a.lower() for a in contract_addresses}),
        "user_address": user_address.lower(),
    }
    canonical_json = json.dumps(canonical, sort_keys=True, separators=(",", ":"))
    digest = hashlib.sha256(canonical_json.encode("utf-8")).hexdigest()
    return f"{GRANT_KEY_PREFIX}{digest}"


def try_grant_lookup(
    *,
    storage: StringStorage,
    chain_id: int,
    contract_addresses: Iterable[str],
    user_address: str,
    now: datetime,
) -> DecryptionGrant | None:
    """Return a stored grant usable for this request, or None.

    Unreadable entries are removed and reported as a miss.
    """
    addresses = normalize_addresses(contract_addresses)
    key = compute_grant_key(
        chain_id=chain_id, contract_addresses=addresses, user_address=user_address
    )
    raw = storage.get_item(key)
    if raw is None:
        return None

    try:
        grant = DecryptionGrant.model_validate_json(raw)
    except ValidationError as exc:
        logger.warning("Discarding unreadable decryption grant: %s", exc.error_count())
        storage.remove_item(key)
        return None

    if not grant.is_usable(user_address=user_address, contract_addresses=addresses, now=now):
        logger.info(
            "Stored decryption grant for %s is expired or does not match; re-signing",
            user_address,
        )
        return None

    return grant


def store_grant(*, storage: StringStorage, chain_id: int, grant: DecryptionGrant) -> None:
    """Persist grant under its key, replacing any previous grant for that key."""
    key = compute_grant_key(
        chain_id=chain_id,
        contract_addresses=grant.contract_addresses,
        user_address=grant.user_address,
    )
    storage.set_item(key, grant.model_dump_json())


async def sign_grant(
    connector: FhevmInstance,
    contract_addresses: Iterable[str],
    signer: Signer,
    *,
    policy: GrantPolicy,
    now: datetime,
) -> DecryptionGrant:
    """Generate a key pair and have signer authorize it.

    Raises:
        SignatureRejectedError: If the signer declines or fails.
    """
    addresses = normalize_addresses(contract_addresses)
    keypair = connector.generate_keypair()
    start_timestamp = int(now.timestamp())
    payload = connector.create_eip712(
        keypair.public_key, list(addresses), start_timestamp, policy.validity_days
    )

    try:
        signature = await signer.sign_typed_data(
            payload.domain, payload.signing_types(), payload.message
        )
    except Exception as exc:
        raise SignatureRejectedError(
            f"Signer declined decryption authorization: {exc}",
            address=signer.address,
            cause=exc,
        ) from exc

    if not signature:
        raise SignatureRejectedError(address=signer.address)

    return DecryptionGrant(
        public_key=keypair.public_key,
        private_key=keypair.private_key,
        signature=signature,
        contract_addresses=addresses,
        user_address=signer.address,
        start_timestamp=start_timestamp,
        duration_days=policy.validity_days,
    )


async def load_or_sign(
    connector: FhevmInstance | None,
    contract_addresses: Iterable[str],
    signer: Signer,
    storage: StringStorage,
    *,
    chain_id: int,
    policy: GrantPolicy | None = None,
    clock: Clock = _utc_now,
) -> DecryptionGrant:
    """Return a valid cached grant, or sign and persist a new one.

    A cached grant is returned unchanged (no signing round-trip) when it is
    unexpired, belongs to signer, and covers every requested address.

    Args:
        connector: Ready connector instance, or None if the lifecycle is not ready.
        contract_addresses: Contracts whose ciphertexts will be decrypted.
        signer: User signer.
        storage: Grant store.
        chain_id: Network the grant is issued for.
        policy: Issuance policy (default: 365-day grants).
        clock: Time source (injectable for tests).

    Raises:
        NoConnectorError: If connector is None.
        SignatureRejectedError: If the signer declines.
    """
    if connector is None:
        raise NoConnectorError(chain_id=chain_id)

    policy = policy or GrantPolicy()
    addresses = normalize_addresses(contract_addresses)
    now = clock()

    cached = try_grant_lookup(
        storage=storage,
        chain_id=chain_id,
        contract_addresses=addresses,
        user_address=signer.address,
        now=now,
    )
    if cached is not None:
        logger.debug("Reusing decryption grant for %s", signer.address)
        return cached

    grant = await sign_grant(connector, addresses, signer, policy=policy, now=now)
    store_grant(storage=storage, chain_id=chain_id, grant=grant)
    logger.info(
        "Issued decryption grant for %s covering %d contract(s), valid %d day(s)",
        signer.address,
        len(addresses),
        policy.validity_days,
    )
    return grant
