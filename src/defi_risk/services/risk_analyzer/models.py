"""Risk analyzer domain values: encrypted result handles and clear results."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Final

from pydantic import BaseModel, ConfigDict

ZERO_HANDLE: Final[str] = "0x" + "00" * 32

RESULT_FIELDS: Final[tuple[str, ...]] = (
    "risk_score",
    "risk_level",
    "stable",
    "bluechip",
    "high_risk",
)

_RISK_LEVEL_LABELS: Final[dict[int, str]] = {
    0: "Low Risk",
    1: "Medium Risk",
    2: "High Risk",
}


def _to_hex(value: bytes | str) -> str:
    if isinstance(value, bytes | bytearray):
        return "0x" + bytes(value).hex()
    text = str(value)
    return text if text.startswith("0x") else f"0x{text}"


class ResultHandles(BaseModel):
    """The five encrypted result handles returned by getAll(), in order.

    A zero handle means the contract holds no result for that field yet.
    """

    model_config = ConfigDict(frozen=True)

    risk_score: str
    risk_level: str
    stable: str
    bluechip: str
    high_risk: str

    @classmethod
    def from_sequence(cls, values: Sequence[bytes | str]) -> ResultHandles:
        """Build from getAll() output (bytes32 values or hex strings).

        Raises:
            ValueError: If values does not hold exactly five handles.
        """
        if len(values) != len(RESULT_FIELDS):
            raise ValueError(f"expected {len(RESULT_FIELDS)} handles, got {len(values)}")
        return cls(**{name: _to_hex(v) for name, v in zip(RESULT_FIELDS, values, strict=True)})

    def as_tuple(self) -> tuple[str, ...]:
        return tuple(getattr(self, name) for name in RESULT_FIELDS)

    @property
    def is_populated(self) -> bool:
        """True when every handle is set and non-zero."""
        return all(h and int(h, 16) != 0 for h in self.as_tuple())


class ClearResult(BaseModel):
    """Decrypted values for one complete batch of result handles.

    Attributes:
        risk_score: Aggregate risk score.
        risk_level: 0 (low), 1 (medium) or 2 (high).
        stable: Recommended stable-asset allocation, percent.
        bluechip: Recommended bluechip allocation, percent.
        high_risk: Recommended high-risk allocation, percent.
    """

    model_config = ConfigDict(frozen=True)

    risk_score: int
    risk_level: int
    stable: int
    bluechip: int
    high_risk: int

    @property
    def risk_level_label(self) -> str:
        return _RISK_LEVEL_LABELS.get(self.risk_level, str(self.risk_level))
