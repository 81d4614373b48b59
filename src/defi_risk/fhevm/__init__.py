"""Confidential-compute (FHEVM) runtime integration.

Loads the runtime module, manages the per-network connector lifecycle, and
issues and caches user-decrypt authorization grants.
"""

from defi_risk.fhevm.decryption_grant import DecryptionGrant, GrantPolicy, load_or_sign
from defi_risk.fhevm.lifecycle import ConnectorLifecycle, ConnectorStatus
from defi_risk.fhevm.loader import (
    ConnectorLoader,
    InvalidRuntime,
    RuntimeEnvironment,
    ValidRuntime,
    check_runtime,
    process_environment,
)
from defi_risk.fhevm.types import BoundConnector, FhevmInstance

__all__ = [
    "BoundConnector",
    "ConnectorLifecycle",
    "ConnectorLoader",
    "ConnectorStatus",
    "DecryptionGrant",
    "FhevmInstance",
    "GrantPolicy",
    "InvalidRuntime",
    "RuntimeEnvironment",
    "ValidRuntime",
    "check_runtime",
    "load_or_sign",
    "process_environment",
]
