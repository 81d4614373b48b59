"""Tests for the confidential-compute runtime loader.

Verifies:
- check_runtime checks the required surface structurally
- Loading outside a runtime environment fails with UnsupportedEnvironmentError
- load() downloads once and is idempotent, including concurrent callers
- Invalid runtimes fail with InvalidRuntimeShapeError and are never installed
- Download and execution failures map to RuntimeLoadError
"""

from __future__ import annotations

import asyncio
import hashlib
from types import SimpleNamespace

import httpx
import pytest

from defi_risk.errors import (
    InvalidRuntimeShapeError,
    RuntimeLoadError,
    UnsupportedEnvironmentError,
)
from defi_risk.fhevm.loader import (
    ConnectorLoader,
    InvalidRuntime,
    RuntimeEnvironment,
    ValidRuntime,
    check_runtime,
)

RUNTIME_URL = "http://localhost:9000/relayer_sdk.py"

VALID_SOURCE = """
default_config = {"aclContractAddress": "0x0000000000000000000000000000000000000001"}

def init_sdk():
    return True

def create_instance(config):
    return dict(config)
"""

MISSING_CREATE_SOURCE = """
default_config = {}

def init_sdk():
    return True
"""


def _valid_runtime(**overrides: object) -> SimpleNamespace:
    members: dict[str, object] = {
        "init_sdk": lambda: None,
        "create_instance": lambda config: config,
        "default_config": {},
    }
    members.update(overrides)
    return SimpleNamespace(**members)


class _CountingHandler:
    """MockTransport handler serving fixed responses and counting requests."""

    def __init__(self, responses: list[httpx.Response]) -> None:
        self._responses = responses
        self.calls = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        assert str(request.url) == RUNTIME_URL
        response = self._responses[min(self.calls, len(self._responses) - 1)]
        self.calls += 1
        return response


def _loader(
    environment: RuntimeEnvironment | None,
    handler: _CountingHandler,
    *,
    max_retries: int = 0,
) -> ConnectorLoader:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ConnectorLoader(
        environment,
        runtime_url=RUNTIME_URL,
        http_client=client,
        max_retries=max_retries,
    )


class TestCheckRuntime:
    def test_valid_runtime(self) -> None:
        runtime = _valid_runtime()
        check = check_runtime(runtime)
        assert isinstance(check, ValidRuntime)
        assert check.runtime is runtime

    def test_valid_with_bool_flag(self) -> None:
        assert isinstance(check_runtime(_valid_runtime(__initialized__=False)), ValidRuntime)

    @pytest.mark.parametrize(
        ("runtime", "reason"),
        [
            (None, "runtime is None"),
            (SimpleNamespace(create_instance=lambda c: c, default_config={}), "missing init_sdk"),
            (_valid_runtime(init_sdk="not callable"), "init_sdk is not callable"),
            (_valid_runtime(create_instance=None), "missing create_instance"),
            (_valid_runtime(default_config=["x"]), "default_config is not a mapping"),
            (_valid_runtime(__initialized__="yes"), "__initialized__ is not a bool"),
        ],
    )
    def test_invalid_runtime(self, runtime: object, reason: str) -> None:
        check = check_runtime(runtime)
        assert isinstance(check, InvalidRuntime)
        assert check.reason == reason


class TestUnsupportedEnvironment:
    def test_is_loaded_raises(self) -> None:
        loader = ConnectorLoader(None)
        with pytest.raises(UnsupportedEnvironmentError):
            loader.is_loaded()

    @pytest.mark.asyncio
    async def test_load_raises(self) -> None:
        handler = _CountingHandler([httpx.Response(200, text=VALID_SOURCE)])
        loader = _loader(None, handler)
        with pytest.raises(UnsupportedEnvironmentError):
            await loader.load()
        assert handler.calls == 0


class TestIsLoaded:
    def test_empty_slot(self) -> None:
        assert ConnectorLoader(RuntimeEnvironment()).is_loaded() is False

    def test_valid_runtime_installed(self) -> None:
        environment = RuntimeEnvironment()
        environment.install(_valid_runtime())
        assert ConnectorLoader(environment).is_loaded() is True

    def test_invalid_runtime_installed(self) -> None:
        environment = RuntimeEnvironment()
        environment.install(_valid_runtime(default_config=None))
        assert ConnectorLoader(environment).is_loaded() is False

    def test_runtime_property_on_empty_slot(self) -> None:
        with pytest.raises(InvalidRuntimeShapeError, match="runtime not loaded"):
            _ = ConnectorLoader(RuntimeEnvironment()).runtime


class TestLoad:
    @pytest.mark.asyncio
    async def test_downloads_and_installs(self) -> None:
        environment = RuntimeEnvironment()
        handler = _CountingHandler([httpx.Response(200, text=VALID_SOURCE)])
        loader = _loader(environment, handler)

        await loader.load()

        assert handler.calls == 1
        assert loader.is_loaded() is True
        runtime = loader.runtime
        assert runtime.create_instance({"a": 1}) == {"a": 1}
        assert runtime.default_config["aclContractAddress"].endswith("01")

    @pytest.mark.asyncio
    async def test_second_load_does_not_download(self) -> None:
        environment = RuntimeEnvironment()
        handler = _CountingHandler([httpx.Response(200, text=VALID_SOURCE)])
        loader = _loader(environment, handler)

        await loader.load()
        first = environment.runtime
        await loader.load()

        assert handler.calls == 1
        assert environment.runtime is first

    @pytest.mark.asyncio
    async def test_concurrent_loads_download_once(self) -> None:
        environment = RuntimeEnvironment()
        handler = _CountingHandler([httpx.Response(200, text=VALID_SOURCE)])
        loader = _loader(environment, handler)

        await asyncio.gather(loader.load(), loader.load(), loader.load())

        assert handler.calls == 1
        assert loader.is_loaded() is True

    @pytest.mark.asyncio
    async def test_preinstalled_valid_runtime_skips_download(self) -> None:
        environment = RuntimeEnvironment()
        runtime = _valid_runtime()
        environment.install(runtime)
        handler = _CountingHandler([httpx.Response(200, text=VALID_SOURCE)])

        await _loader(environment, handler).load()

        assert handler.calls == 0
        assert environment.runtime is runtime

    @pytest.mark.asyncio
    async def test_preinstalled_invalid_runtime_raises(self) -> None:
        environment = RuntimeEnvironment()
        environment.install(_valid_runtime(init_sdk=42))
        handler = _CountingHandler([httpx.Response(200, text=VALID_SOURCE)])

        with pytest.raises(InvalidRuntimeShapeError) as exc_info:
            await _loader(environment, handler).load()

        assert exc_info.value.reason == "init_sdk is not callable"
        assert handler.calls == 0

    @pytest.mark.asyncio
    async def test_downloaded_invalid_runtime_not_installed(self) -> None:
        environment = RuntimeEnvironment()
        handler = _CountingHandler([httpx.Response(200, text=MISSING_CREATE_SOURCE)])

        with pytest.raises(InvalidRuntimeShapeError) as exc_info:
            await _loader(environment, handler).load()

        assert exc_info.value.reason == "missing create_instance"
        assert exc_info.value.source == RUNTIME_URL
        assert environment.has_runtime is False


class TestLoadFailures:
    @pytest.mark.asyncio
    async def test_http_error_after_retries(self) -> None:
        environment = RuntimeEnvironment()
        handler = _CountingHandler([httpx.Response(503)])

        with pytest.raises(RuntimeLoadError, match="after 3 attempts"):
            await _loader(environment, handler, max_retries=2).load()

        assert handler.calls == 3
        assert environment.has_runtime is False

    @pytest.mark.asyncio
    async def test_retry_recovers(self) -> None:
        environment = RuntimeEnvironment()
        handler = _CountingHandler(
            [httpx.Response(502), httpx.Response(200, text=VALID_SOURCE)]
        )

        await _loader(environment, handler, max_retries=1).load()

        assert handler.calls == 2
        assert environment.has_runtime is True

    @pytest.mark.asyncio
    async def test_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        loader = ConnectorLoader(RuntimeEnvironment(), runtime_url=RUNTIME_URL, http_client=client)

        with pytest.raises(RuntimeLoadError) as exc_info:
            await loader.load()
        assert isinstance(exc_info.value.cause, httpx.ConnectError)

    @pytest.mark.asyncio
    async def test_source_that_does_not_compile(self) -> None:
        environment = RuntimeEnvironment()
        handler = _CountingHandler([httpx.Response(200, text="def broken(:\n")])

        with pytest.raises(RuntimeLoadError, match="failed to execute"):
            await _loader(environment, handler).load()
        assert environment.has_runtime is False

    @pytest.mark.asyncio
    async def test_source_that_raises_on_import(self) -> None:
        environment = RuntimeEnvironment()
        handler = _CountingHandler([httpx.Response(200, text="raise RuntimeError('boom')\n")])

        with pytest.raises(RuntimeLoadError) as exc_info:
            await _loader(environment, handler).load()
        assert isinstance(exc_info.value.cause, RuntimeError)


class TestRuntimeDigest:
    @pytest.mark.asyncio
    async def test_matching_digest_loads(self) -> None:
        environment = RuntimeEnvironment()
        handler = _CountingHandler([httpx.Response(200, text=VALID_SOURCE)])
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        digest = hashlib.sha256(VALID_SOURCE.encode("utf-8")).hexdigest()
        loader = ConnectorLoader(
            environment,
            runtime_url=RUNTIME_URL,
            http_client=client,
            expected_sha256=digest.upper(),
            max_retries=0,
        )

        await loader.load()

        assert loader.is_loaded() is True

    @pytest.mark.asyncio
    async def test_mismatched_digest_is_not_executed(self) -> None:
        environment = RuntimeEnvironment()
        handler = _CountingHandler([httpx.Response(200, text="raise RuntimeError('boom')\n")])
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        loader = ConnectorLoader(
            environment,
            runtime_url=RUNTIME_URL,
            http_client=client,
            expected_sha256=hashlib.sha256(VALID_SOURCE.encode("utf-8")).hexdigest(),
            max_retries=0,
        )

        with pytest.raises(RuntimeLoadError, match="failed digest check") as exc_info:
            await loader.load()

        assert exc_info.value.cause is None
        assert environment.has_runtime is False
