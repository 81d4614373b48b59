"""Client configuration loaded from environment variables.

Every setting has a default so the client runs against a local hardhat node
out of the box. Invalid values fail loudly with ClientConfigError instead of
silently falling back.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Final

from defi_risk.errors import ClientConfigError

logger = logging.getLogger(__name__)

ENV_RPC_URL: Final[str] = "DEFI_RISK_RPC_URL"
ENV_CHAIN_ID: Final[str] = "DEFI_RISK_CHAIN_ID"
ENV_PRIVATE_KEY: Final[str] = "DEFI_RISK_PRIVATE_KEY"
ENV_RUNTIME_URL: Final[str] = "DEFI_RISK_RUNTIME_URL"
ENV_RUNTIME_SHA256: Final[str] = "DEFI_RISK_RUNTIME_SHA256"
ENV_MOCK_CHAINS: Final[str] = "DEFI_RISK_MOCK_CHAINS"
ENV_DEPLOYMENTS_FILE: Final[str] = "DEFI_RISK_DEPLOYMENTS_FILE"
ENV_GRANT_STORE_PATH: Final[str] = "DEFI_RISK_GRANT_STORE_PATH"
ENV_GRANT_VALIDITY_DAYS: Final[str] = "DEFI_RISK_GRANT_VALIDITY_DAYS"
ENV_HTTP_TIMEOUT_SECONDS: Final[str] = "DEFI_RISK_HTTP_TIMEOUT_SECONDS"
ENV_HTTP_MAX_RETRIES: Final[str] = "DEFI_RISK_HTTP_MAX_RETRIES"
ENV_LOG_LEVEL: Final[str] = "DEFI_RISK_LOG_LEVEL"

DEFAULT_RPC_URL: Final[str] = "http://localhost:8545"
DEFAULT_CHAIN_ID: Final[int] = 31337
DEFAULT_RUNTIME_URL: Final[str] = "https://cdn.zama.ai/relayer-sdk-py/0.2.0/relayer_sdk.py"
DEFAULT_MOCK_CHAINS: Final[dict[int, str]] = {31337: "http://localhost:8545"}
DEFAULT_GRANT_VALIDITY_DAYS: Final[int] = 365
DEFAULT_HTTP_TIMEOUT_SECONDS: Final[float] = 30.0
DEFAULT_HTTP_MAX_RETRIES: Final[int] = 1
DEFAULT_LOG_LEVEL: Final[str] = "INFO"

_VALID_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})
_HEX_DIGITS = frozenset("0123456789abcdef")


@dataclass(frozen=True)
class ClientConfig:
    """Client configuration (immutable).

    Attributes:
        rpc_url: JSON-RPC endpoint of the confidential-compute network.
        chain_id: Network id expected at rpc_url.
        private_key: Hex private key for the local signer (None = read-only).
        runtime_url: Location of the confidential-compute runtime module.
        runtime_sha256: Hex SHA-256 pinning the runtime module source (None = unpinned).
        mock_chains: Local chains mapped to the RPC url their connector uses.
        deployments_file: JSON file or hardhat-deploy directory with addresses.
        grant_store_path: JSON file persisting decryption grants (None = memory).
        grant_validity_days: Lifetime of newly issued decryption grants.
        http_timeout_seconds: Timeout for runtime module downloads.
        http_max_retries: Retries for runtime module downloads.
        log_level: Root log level for the CLI.
    """

    rpc_url: str = DEFAULT_RPC_URL
    chain_id: int = DEFAULT_CHAIN_ID
    private_key: str | None = field(default=None, repr=False)
    runtime_url: str = DEFAULT_RUNTIME_URL
    runtime_sha256: str | None = None
    mock_chains: dict[int, str] = field(default_factory=lambda: dict(DEFAULT_MOCK_CHAINS))
    deployments_file: Path | None = None
    grant_store_path: Path | None = None
    grant_validity_days: int = DEFAULT_GRANT_VALIDITY_DAYS
    http_timeout_seconds: float = DEFAULT_HTTP_TIMEOUT_SECONDS
    http_max_retries: int = DEFAULT_HTTP_MAX_RETRIES
    log_level: str = DEFAULT_LOG_LEVEL

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.runtime_sha256 is not None:
            digest = self.runtime_sha256.lower()
            if len(digest) != 64 or not set(digest) <= _HEX_DIGITS:
                raise ClientConfigError(
                    f"{ENV_RUNTIME_SHA256} must be 64 hex characters, got '{self.runtime_sha256}'"
                )
            object.__setattr__(self, "runtime_sha256", digest)
        if self.chain_id <= 0:
            raise ClientConfigError(f"{ENV_CHAIN_ID} must be a positive integer, got {self.chain_id}")
        if self.grant_validity_days <= 0:
            raise ClientConfigError(
                f"{ENV_GRANT_VALIDITY_DAYS} must be a positive integer, "
                f"got {self.grant_validity_days}"
            )
        if self.http_timeout_seconds <= 0:
            raise ClientConfigError(
                f"{ENV_HTTP_TIMEOUT_SECONDS} must be positive, got {self.http_timeout_seconds}"
            )
        if self.http_max_retries < 0:
            raise ClientConfigError(
                f"{ENV_HTTP_MAX_RETRIES} must be >= 0, got {self.http_max_retries}"
            )
        if self.log_level not in _VALID_LOG_LEVELS:
            raise ClientConfigError(
                f"{ENV_LOG_LEVEL} must be one of {sorted(_VALID_LOG_LEVELS)}, got '{self.log_level}'"
            )


def _get_env_str(key: str) -> str | None:
    """Get a stripped string from the environment, None when unset or blank."""
    raw = os.environ.get(key)
    if raw is None:
        return None
    raw = raw.strip()
    return raw or None


def _parse_int(env_var: str, default: int) -> int:
    """Parse an integer from an environment variable.

    Raises:
        ClientConfigError: If the value is set but not an integer.
    """
    raw = _get_env_str(env_var)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ClientConfigError(f"{env_var} must be an integer, got '{raw}'") from e


def _parse_float(env_var: str, default: float) -> float:
    """Parse a float from an environment variable.

    Raises:
        ClientConfigError: If the value is set but not a number.
    """
    raw = _get_env_str(env_var)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ClientConfigError(f"{env_var} must be a number, got '{raw}'") from e


def parse_mock_chains(raw: str) -> dict[int, str]:
    """Parse comma-separated ``chain_id=rpc_url`` pairs.

    Example: ``31337=http://localhost:8545,1337=http://127.0.0.1:7545``

    Raises:
        ClientConfigError: On a malformed pair or non-integer chain id.
    """
    result: dict[int, str] = {}
    for pair in raw.split(","):
        pair = pair.strip()
        if not pair:
            continue
        if "=" not in pair:
            raise ClientConfigError(f"{ENV_MOCK_CHAINS} entry must be chain_id=url, got '{pair}'")
        chain_str, url = pair.split("=", 1)
        try:
            chain_id = int(chain_str.strip())
        except ValueError as e:
            raise ClientConfigError(
                f"{ENV_MOCK_CHAINS} chain id must be an integer, got '{chain_str.strip()}'"
            ) from e
        result[chain_id] = url.strip()
    return result


def load_client_config() -> ClientConfig:
    """Load client configuration from environment variables.

    Environment variables:
        DEFI_RISK_RPC_URL: JSON-RPC url (default: http://localhost:8545)
        DEFI_RISK_CHAIN_ID: Network id (default: 31337)
        DEFI_RISK_PRIVATE_KEY: Signer private key (default: unset, read-only)
        DEFI_RISK_RUNTIME_URL: Runtime module url (default: CDN)
        DEFI_RISK_RUNTIME_SHA256: Expected runtime source digest (default: unset)
        DEFI_RISK_MOCK_CHAINS: chain_id=url pairs (default: 31337=http://localhost:8545)
        DEFI_RISK_DEPLOYMENTS_FILE: Addresses JSON file or hardhat deployments dir
        DEFI_RISK_GRANT_STORE_PATH: JSON grant store (default: in-memory)
        DEFI_RISK_GRANT_VALIDITY_DAYS: Grant lifetime in days (default: 365)
        DEFI_RISK_HTTP_TIMEOUT_SECONDS: Runtime download timeout (default: 30)
        DEFI_RISK_HTTP_MAX_RETRIES: Runtime download retries (default: 1)
        DEFI_RISK_LOG_LEVEL: Log level (default: INFO)

    Returns:
        ClientConfig with validated values.

    Raises:
        ClientConfigError: If any value is invalid.
    """
    mock_chains_raw = _get_env_str(ENV_MOCK_CHAINS)
    mock_chains = (
        parse_mock_chains(mock_chains_raw)
        if mock_chains_raw is not None
        else dict(DEFAULT_MOCK_CHAINS)
    )

    deployments_raw = _get_env_str(ENV_DEPLOYMENTS_FILE)
    grant_store_raw = _get_env_str(ENV_GRANT_STORE_PATH)

    config = ClientConfig(
        rpc_url=_get_env_str(ENV_RPC_URL) or DEFAULT_RPC_URL,
        chain_id=_parse_int(ENV_CHAIN_ID, DEFAULT_CHAIN_ID),
        private_key=_get_env_str(ENV_PRIVATE_KEY),
        runtime_url=_get_env_str(ENV_RUNTIME_URL) or DEFAULT_RUNTIME_URL,
        runtime_sha256=_get_env_str(ENV_RUNTIME_SHA256),
        mock_chains=mock_chains,
        deployments_file=Path(deployments_raw) if deployments_raw else None,
        grant_store_path=Path(grant_store_raw) if grant_store_raw else None,
        grant_validity_days=_parse_int(ENV_GRANT_VALIDITY_DAYS, DEFAULT_GRANT_VALIDITY_DAYS),
        http_timeout_seconds=_parse_float(ENV_HTTP_TIMEOUT_SECONDS, DEFAULT_HTTP_TIMEOUT_SECONDS),
        http_max_retries=_parse_int(ENV_HTTP_MAX_RETRIES, DEFAULT_HTTP_MAX_RETRIES),
        log_level=(_get_env_str(ENV_LOG_LEVEL) or DEFAULT_LOG_LEVEL).upper(),
    )
    logger.debug(
        "Loaded client config: chain_id=%s rpc_url=%s runtime_url=%s signer=%s",
        config.chain_id,
        config.rpc_url,
        config.runtime_url,
        "configured" if config.private_key else "none",
    )
    return config
