"""ABI of the DeFiRiskAnalyzer confidential contract."""

from __future__ import annotations

from typing import Any, Final

CONTRACT_NAME: Final[str] = "DeFiRiskAnalyzer"
PROTOCOL_UNSUPPORTED_ERROR: Final[str] = "ZamaProtocolUnsupported()"


def _bytes32(name: str, internal_type: str) -> dict[str, str]:
    return {"internalType": internal_type, "name": name, "type": "bytes32"}


def _view(name: str, outputs: list[dict[str, str]]) -> dict[str, Any]:
    return {
        "inputs": [],
        "name": name,
        "outputs": outputs,
        "stateMutability": "view",
        "type": "function",
    }


RISK_ANALYZER_ABI: Final[list[dict[str, Any]]] = [
    {"inputs": [], "name": "ZamaProtocolUnsupported", "type": "error"},
    {
        "inputs": [
            _bytes32("cipherAssets", "externalEuint32"),
            _bytes32("cipherRiskPref", "externalEuint32"),
            _bytes32("cipherPositionVol", "externalEuint32"),
            {"internalType": "bytes", "name": "inputProof", "type": "bytes"},
        ],
        "name": "analyze",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    _view(
        "confidentialProtocolId",
        [{"internalType": "uint256", "name": "", "type": "uint256"}],
    ),
    _view(
        "getAll",
        [
            _bytes32("riskScore", "euint32"),
            _bytes32("riskLevel", "euint8"),
            _bytes32("stablePct", "euint8"),
            _bytes32("bluechipPct", "euint8"),
            _bytes32("highRiskPct", "euint8"),
        ],
    ),
    _view(
        "getRecommendations",
        [
            _bytes32("stable", "euint8"),
            _bytes32("bluechip", "euint8"),
            _bytes32("highRisk", "euint8"),
        ],
    ),
    _view("getRiskLevel", [_bytes32("", "euint8")]),
    _view("getRiskScore", [_bytes32("", "euint32")]),
]
