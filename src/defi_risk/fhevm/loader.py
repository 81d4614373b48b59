"""Locates, validates and loads the confidential-compute runtime module.

The runtime is a Python module published at a fixed CDN location (or served
by a local mock endpoint during development). Once fetched it is executed
into a fresh module object, structurally validated, and installed in the
runtime environment slot where later loads find it.

A runtime must expose:
- init_sdk: callable, initializes the runtime (sync or async)
- create_instance: callable, builds a connector for a network config
- default_config: mapping with the default network configuration
- __initialized__: optional, must be a bool when present
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import types
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Final

import httpx

from defi_risk.config import DEFAULT_RUNTIME_URL
from defi_risk.errors import (
    InvalidRuntimeShapeError,
    RuntimeLoadError,
    UnsupportedEnvironmentError,
)

logger = logging.getLogger(__name__)

RUNTIME_MODULE_NAME: Final[str] = "relayer_sdk"
INITIALIZED_FLAG: Final[str] = "__initialized__"

_REQUIRED_CALLABLES: Final[tuple[str, ...]] = ("init_sdk", "create_instance")
_REQUIRED_MAPPINGS: Final[tuple[str, ...]] = ("default_config",)


@dataclass(frozen=True, slots=True)
class ValidRuntime:
    """Check outcome for a runtime that satisfies the required surface."""

    runtime: Any


@dataclass(frozen=True, slots=True)
class InvalidRuntime:
    """Check outcome for a runtime that does not.

    Attributes:
        reason: First structural check that failed.
    """

    reason: str


RuntimeCheck = ValidRuntime | InvalidRuntime


def check_runtime(obj: Any) -> RuntimeCheck:
    """Check that obj exposes the runtime surface.

    Purely structural: presence and type of each member, nothing is called.
    """
    if obj is None:
        return InvalidRuntime("runtime is None")

    for name in _REQUIRED_CALLABLES:
        value = getattr(obj, name, None)
        if value is None:
            return InvalidRuntime(f"missing {name}")
        if not callable(value):
            return InvalidRuntime(f"{name} is not callable")

    for name in _REQUIRED_MAPPINGS:
        value = getattr(obj, name, None)
        if value is None:
            return InvalidRuntime(f"missing {name}")
        if not isinstance(value, Mapping):
            return InvalidRuntime(f"{name} is not a mapping")

    if hasattr(obj, INITIALIZED_FLAG):
        if not isinstance(getattr(obj, INITIALIZED_FLAG), bool):
            return InvalidRuntime(f"{INITIALIZED_FLAG} is not a bool")

    return ValidRuntime(obj)


class RuntimeEnvironment:
    """Slot holding the loaded runtime module.

    One environment exists per process (see process_environment); tests build
    their own. Installing does not validate: the loader checks whatever it
    finds before trusting it.
    """

    def __init__(self) -> None:
        self._runtime: Any = None
        self._occupied = False

    @property
    def has_runtime(self) -> bool:
        return self._occupied

    @property
    def runtime(self) -> Any:
        return self._runtime

    def install(self, runtime: Any) -> None:
        self._runtime = runtime
        self._occupied = True

    def clear(self) -> None:
        self._runtime = None
        self._occupied = False


_process_environment = RuntimeEnvironment()


def process_environment() -> RuntimeEnvironment:
    """Return the process-wide runtime environment."""
    return _process_environment


class ConnectorLoader:
    """Loads the runtime module into a RuntimeEnvironment.

    load() is idempotent and safe to call concurrently: callers arriving while
    a download is in flight wait for it instead of starting a second one.
    """

    def __init__(
        self,
        environment: RuntimeEnvironment | None,
        *,
        runtime_url: str = DEFAULT_RUNTIME_URL,
        expected_sha256: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 30.0,
        max_retries: int = 1,
    ) -> None:
        """Initialize the loader.

        Args:
            environment: Slot receiving the runtime. None means the loader runs
                outside a capable environment and every call fails.
            runtime_url: CDN or local mock endpoint serving the module source.
            expected_sha256: Hex SHA-256 the downloaded source must match before it
                is executed. None skips the check.
            http_client: Optional httpx.AsyncClient for dependency injection (testing).
            timeout_seconds: Download timeout when no client is injected.
            max_retries: Retries on transport or HTTP status errors.
        """
        self._environment = environment
        self._runtime_url = runtime_url
        self._expected_sha256 = expected_sha256.lower() if expected_sha256 else None
        self._http_client = http_client
        self._timeout_seconds = timeout_seconds
        self._max_retries = max_retries
        self._lock = asyncio.Lock()

    @property
    def runtime_url(self) -> str:
        return self._runtime_url

    def is_loaded(self) -> bool:
        """Return True if the environment holds a structurally valid runtime.

        Raises:
            UnsupportedEnvironmentError: If the loader has no environment.
        """
        environment = self._require_environment()
        if not environment.has_runtime:
            logger.debug("Runtime slot is empty")
            return False
        check = check_runtime(environment.runtime)
        if isinstance(check, InvalidRuntime):
            logger.debug("Runtime slot holds an invalid runtime: %s", check.reason)
            return False
        return True

    @property
    def runtime(self) -> Any:
        """Return the validated runtime.

        Raises:
            UnsupportedEnvironmentError: If the loader has no environment.
            InvalidRuntimeShapeError: If the slot is empty or holds an invalid runtime.
        """
        environment = self._require_environment()
        if not environment.has_runtime:
            raise InvalidRuntimeShapeError("runtime not loaded")
        check = check_runtime(environment.runtime)
        if isinstance(check, InvalidRuntime):
            raise InvalidRuntimeShapeError(check.reason)
        return check.runtime

    async def load(self) -> None:
        """Ensure a valid runtime is installed, downloading it if needed.

        Raises:
            UnsupportedEnvironmentError: If the loader has no environment.
            InvalidRuntimeShapeError: If the present or downloaded runtime is invalid.
            RuntimeLoadError: If the download fails, the source digest does not match,
                or module execution fails.
        """
        environment = self._require_environment()
        if environment.has_runtime:
            self._check_installed(environment)
            return

        async with self._lock:
            if environment.has_runtime:
                self._check_installed(environment)
                return

            source = await self._fetch_source()
            self._verify_digest(source)
            module = self._execute_source(source)

            check = check_runtime(module)
            if isinstance(check, InvalidRuntime):
                raise InvalidRuntimeShapeError(check.reason, source=self._runtime_url)

            environment.install(module)
            logger.info("Loaded confidential-compute runtime from %s", self._runtime_url)

    def _require_environment(self) -> RuntimeEnvironment:
        if self._environment is None:
            raise UnsupportedEnvironmentError()
        return self._environment

    def _check_installed(self, environment: RuntimeEnvironment) -> None:
        check = check_runtime(environment.runtime)
        if isinstance(check, InvalidRuntime):
            raise InvalidRuntimeShapeError(check.reason)

    async def _fetch_source(self) -> bytes:
        """Download the runtime module source.

        Raises:
            RuntimeLoadError: On persistent network or HTTP errors.
        """
        client = self._http_client
        should_close = False
        if client is None:
            client = httpx.AsyncClient(timeout=self._timeout_seconds)
            should_close = True
        try:
            return await self._fetch_with_retries(client)
        finally:
            if should_close:
                await client.aclose()

    async def _fetch_with_retries(self, client: httpx.AsyncClient) -> bytes:
        last_error: Exception | None = None
        attempts = 1 + self._max_retries

        for attempt in range(attempts):
            try:
                response = await client.get(self._runtime_url)
                response.raise_for_status()
                return response.content
            except httpx.HTTPStatusError as exc:
                last_error = exc
            except httpx.RequestError as exc:
                last_error = exc
            if attempt < attempts - 1:
                logger.warning(
                    "Runtime download attempt %d/%d failed: %s",
                    attempt + 1,
                    attempts,
                    last_error,
                )

        raise RuntimeLoadError(
            f"Failed to load runtime from {self._runtime_url} after {attempts} attempts: "
            f"{last_error}",
            cause=last_error,
        )

    def _verify_digest(self, source: bytes) -> None:
        """Reject source whose SHA-256 differs from the pinned digest.

        Raises:
            RuntimeLoadError: On a digest mismatch.
        """
        if self._expected_sha256 is None:
            return
        actual = hashlib.sha256(source).hexdigest()
        if actual != self._expected_sha256:
            raise RuntimeLoadError(
                f"Runtime module from {self._runtime_url} failed digest check: "
                f"expected sha256 {self._expected_sha256}, got {actual}"
            )
        logger.debug("Runtime source digest verified: %s", actual)

    def _execute_source(self, source: bytes) -> types.ModuleType:
        """Execute downloaded source into a fresh module object.

        Raises:
            RuntimeLoadError: If the source does not compile or raises on import.
        """
        module = types.ModuleType(RUNTIME_MODULE_NAME)
        module.__file__ = self._runtime_url
        try:
            code = compile(source, self._runtime_url, "exec")
            exec(code, module.__dict__)
        except Exception as exc:
            raise RuntimeLoadError(
                f"Runtime module from {self._runtime_url} failed to execute: {exc}",
                cause=exc,
            ) from exc
        return module
