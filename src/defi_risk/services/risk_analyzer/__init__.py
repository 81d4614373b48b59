"""Risk analyzer orchestration: handles, clear results and the session."""

from defi_risk.services.risk_analyzer.models import ClearResult, ResultHandles
from defi_risk.services.risk_analyzer.session import (
    RiskAnalyzerSession,
    decode_clear_result,
    parse_uint32,
)
from defi_risk.services.risk_analyzer.snapshot import OperationSnapshot, ensure_fresh

__all__ = [
    "ClearResult",
    "OperationSnapshot",
    "ResultHandles",
    "RiskAnalyzerSession",
    "decode_clear_result",
    "ensure_fresh",
    "parse_uint32",
]
