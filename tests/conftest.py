"""Pytest configuration and fixtures for defi_risk tests.

This module provides common fixtures and configuration for all tests.
"""

from __future__ import annotations

import os
from collections.abc import Iterator

import pytest

from defi_risk.fhevm.loader import process_environment
from defi_risk.observability.tracing import reset_tracing


@pytest.fixture(autouse=True)
def clean_client_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove DEFI_RISK_* variables so every test starts from defaults.

    Tests that need a setting set it explicitly with monkeypatch.
    """
    for key in list(os.environ):
        if key.startswith("DEFI_RISK_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture(autouse=True)
def clean_process_runtime() -> Iterator[None]:
    """Empty the process-wide runtime slot and tracer around each test."""
    process_environment().clear()
    reset_tracing()
    yield
    process_environment().clear()
    reset_tracing()
