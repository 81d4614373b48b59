"""Observability helpers (OpenTelemetry tracing)."""

from defi_risk.observability.tracing import configure_tracing, traced_operation

__all__ = ["configure_tracing", "traced_operation"]
