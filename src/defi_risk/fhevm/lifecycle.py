"""Connector lifecycle: one ready connector per (provider, network).

States:
    idle -> loading -> ready
    loading -> error

configure() starts a transition whenever the (provider, chain_id) pair
changes. The connector reference is replaced wholesale; a load that was
superseded by a newer configure() while suspended is discarded instead of
installed, so a connector built for network A is never exposed once B is
active.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Mapping
from enum import StrEnum
from typing import Any

from defi_risk.fhevm.loader import INITIALIZED_FLAG, ConnectorLoader
from defi_risk.fhevm.types import BoundConnector, FhevmInstance

logger = logging.getLogger(__name__)


class ConnectorStatus(StrEnum):
    """Lifecycle state of the connector."""

    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


_STATUS_TEXT: dict[ConnectorStatus, str] = {
    ConnectorStatus.IDLE: "Initializing...",
    ConnectorStatus.LOADING: "Loading FHEVM...",
    ConnectorStatus.READY: "Ready",
    ConnectorStatus.ERROR: "Error occurred",
}


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def build_network_config(
    default_config: Mapping[str, Any],
    *,
    network: str,
    chain_id: int,
) -> dict[str, Any]:
    """Merge the runtime's default config with the target network."""
    config = dict(default_config)
    config["network"] = network
    config["chain_id"] = chain_id
    return config


class ConnectorLifecycle:
    """Owns the connector and recreates it on network or provider change."""

    def __init__(
        self,
        loader: ConnectorLoader,
        *,
        mock_chains: Mapping[int, str] | None = None,
        enabled: bool = True,
    ) -> None:
        """Initialize the lifecycle in the idle state.

        Args:
            loader: Loader for the confidential-compute runtime.
            mock_chains: Local chains mapped to the RPC url their connector uses.
            enabled: When False, configure() always returns to idle.
        """
        self._loader = loader
        self._mock_chains = dict(mock_chains or {})
        self._enabled = enabled
        self._status = ConnectorStatus.IDLE
        self._error: Exception | None = None
        self._bound: BoundConnector | None = None
        self._target: tuple[str, int] | None = None
        self._generation = 0

    @property
    def status(self) -> ConnectorStatus:
        return self._status

    @property
    def status_text(self) -> str:
        return _STATUS_TEXT[self._status]

    @property
    def error(self) -> Exception | None:
        return self._error

    @property
    def connector(self) -> BoundConnector | None:
        """The ready connector, or None in any other state."""
        if self._status != ConnectorStatus.READY:
            return None
        return self._bound

    def connector_for(self, chain_id: int | None) -> FhevmInstance | None:
        """Return the ready instance only if it was built for chain_id."""
        bound = self.connector
        if bound is None or chain_id is None or bound.chain_id != chain_id:
            return None
        return bound.instance

    @property
    def enabled(self) -> bool:
        return self._enabled

    async def set_enabled(self, enabled: bool) -> None:
        """Enable or disable the lifecycle, reconfiguring the current target."""
        if enabled == self._enabled:
            return
        self._enabled = enabled
        target = self._target
        self._target = None
        if target is None:
            self._teardown()
            return
        await self.configure(*target)

    async def configure(self, provider: str | None, chain_id: int | None) -> None:
        """Move to the connector for (provider, chain_id).

        No-op when the pair is unchanged. A missing provider or chain id, or a
        disabled lifecycle, returns to idle.
        """
        if not self._enabled or provider is None or chain_id is None:
            self._target = None if provider is None or chain_id is None else (provider, chain_id)
            self._teardown()
            return

        target = (provider, chain_id)
        if target == self._target and self._status != ConnectorStatus.IDLE:
            return

        self._target = target
        self._generation += 1
        generation = self._generation
        self._bound = None
        self._error = None
        self._status = ConnectorStatus.LOADING
        logger.info("Creating connector for chain_id=%s", chain_id)

        try:
            instance = await self._create_instance(provider, chain_id)
        except Exception as exc:
            if generation != self._generation:
                logger.debug("Discarding failure of superseded load for chain_id=%s", chain_id)
                return
            self._status = ConnectorStatus.ERROR
            self._error = exc
            logger.error("Connector creation failed for chain_id=%s: %s", chain_id, exc)
            return

        if generation != self._generation:
            logger.info("Discarding connector for chain_id=%s: superseded", chain_id)
            return

        self._bound = BoundConnector(chain_id=chain_id, provider=provider, instance=instance)
        self._status = ConnectorStatus.READY
        logger.info("Connector ready for chain_id=%s", chain_id)

    async def _create_instance(self, provider: str, chain_id: int) -> FhevmInstance:
        await self._loader.load()
        runtime = self._loader.runtime

        if getattr(runtime, INITIALIZED_FLAG, False) is not True:
            await _resolve(runtime.init_sdk())
            setattr(runtime, INITIALIZED_FLAG, True)

        network = self._mock_chains.get(chain_id, provider)
        config = build_network_config(runtime.default_config, network=network, chain_id=chain_id)
        instance: FhevmInstance = await _resolve(runtime.create_instance(config))
        return instance

    def _teardown(self) -> None:
        if self._bound is not None:
            logger.info("Dropping connector for chain_id=%s", self._bound.chain_id)
        self._generation += 1
        self._bound = None
        self._error = None
        self._status = ConnectorStatus.IDLE
