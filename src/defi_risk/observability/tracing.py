"""OpenTelemetry tracing for session operations.

Environment Variables:
    DEFI_RISK_OTEL_ENABLED: Set to "1" to emit spans (default: disabled)
    DEFI_RISK_OTEL_SERVICE_NAME: Service name for spans (default: "defi-risk-client")
    DEFI_RISK_OTEL_EXPORTER: "console" or "none" (default: "console")
    DEFI_RISK_OTEL_TEST_CAPTURE: Set to "1" to use the in-memory exporter for tests

Span attributes carry network ids and contract addresses only. Key material,
signatures and plaintexts are never exported.
"""

from __future__ import annotations

import functools
import logging
import os
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar, cast

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import ReadableSpan, TracerProvider
from opentelemetry.sdk.trace.export import ConsoleSpanExporter, SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

logger = logging.getLogger(__name__)

TRACER_NAME = "defi_risk.session"

F = TypeVar("F", bound=Callable[..., Awaitable[Any]])

_tracer_provider: TracerProvider | None = None
_test_exporter: InMemorySpanExporter | None = None


def _get_env_bool(key: str, default: bool = False) -> bool:
    """Get boolean from environment variable."""
    val = os.environ.get(key, "").strip().lower()
    if val in ("1", "true", "yes"):
        return True
    if val in ("0", "false", "no"):
        return False
    return default


def is_tracing_enabled() -> bool:
    return _get_env_bool("DEFI_RISK_OTEL_ENABLED", False)


def configure_tracing() -> bool:
    """Install a tracer provider when tracing is enabled.

    Idempotent - safe to call multiple times.

    Returns:
        True if tracing is enabled and configured, False otherwise.
    """
    global _tracer_provider, _test_exporter

    if not is_tracing_enabled():
        logger.debug("Tracing disabled (DEFI_RISK_OTEL_ENABLED not set)")
        return False

    if _tracer_provider is not None:
        return True

    service_name = os.environ.get("DEFI_RISK_OTEL_SERVICE_NAME", "defi-risk-client").strip()
    exporter_type = os.environ.get("DEFI_RISK_OTEL_EXPORTER", "console").strip().lower()

    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))

    if _get_env_bool("DEFI_RISK_OTEL_TEST_CAPTURE", False):
        _test_exporter = InMemorySpanExporter()
        provider.add_span_processor(SimpleSpanProcessor(_test_exporter))
    elif exporter_type == "console":
        provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))

    _tracer_provider = provider
    logger.info("Tracing configured: service=%s exporter=%s", service_name, exporter_type)
    return True


def get_tracer() -> trace.Tracer:
    """Return the session tracer from the configured provider."""
    if _tracer_provider is not None:
        return _tracer_provider.get_tracer(TRACER_NAME)
    return trace.get_tracer(TRACER_NAME)


def get_test_spans() -> list[ReadableSpan]:
    """Return spans captured by the in-memory exporter (tests only)."""
    if _test_exporter is None:
        return []
    return list(_test_exporter.get_finished_spans())


def reset_tracing() -> None:
    """Forget the configured provider (tests only)."""
    global _tracer_provider, _test_exporter
    if _tracer_provider is not None:
        _tracer_provider.shutdown()
    _tracer_provider = None
    _test_exporter = None


def traced_operation(operation: str) -> Callable[[F], F]:
    """Decorate an async session method with a span.

    The span records the chain id and contract address of the session at
    call time, plus the exception type when the method raises.
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        async def wrapper(self: Any, *args: Any, **kwargs: Any) -> Any:
            if not is_tracing_enabled():
                return await func(self, *args, **kwargs)

            with get_tracer().start_as_current_span(f"defi_risk.{operation}") as span:
                chain_id = getattr(self, "chain_id", None)
                if chain_id is not None:
                    span.set_attribute("defi_risk.chain_id", chain_id)
                address = getattr(self, "contract_address", None)
                if address:
                    span.set_attribute("defi_risk.contract_address", address)
                try:
                    return await func(self, *args, **kwargs)
                except Exception as e:
                    span.set_attribute("error", True)
                    span.set_attribute("error.type", type(e).__name__)
                    raise

        return cast(F, wrapper)

    return decorator
