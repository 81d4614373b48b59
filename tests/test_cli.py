"""Tests for the defi-risk CLI.

Verifies:
- Output is deterministic JSON
- Exit codes: 0 success, 1 failure, 2 not deployed
- Configuration errors fail closed with exit code 1
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import pytest

from defi_risk import cli
from defi_risk.fhevm.loader import process_environment
from defi_risk.fhevm.types import Eip712Payload, HandleContractPair, Keypair
from defi_risk.services.risk_analyzer.models import ResultHandles

CONTRACT = "0x5FbDB2315678afecb367f032d93F642f64180aa3"
HARDHAT_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
HANDLES = ResultHandles.from_sequence([f"0x{i:064x}" for i in range(1, 6)])


class _FakeGateway:
    fail_reads = False

    @classmethod
    def from_rpc_url(cls, rpc_url: str, *, chain_id: int, timeout_seconds: float) -> _FakeGateway:
        return cls()

    async def get_all(self, address: str) -> ResultHandles:
        if self.fail_reads:
            raise ConnectionError("node unreachable")
        return HANDLES


class _FakeInstance:
    def generate_keypair(self) -> Keypair:
        return Keypair(public_key="pub", private_key="priv")

    def create_eip712(
        self,
        public_key: str,
        contract_addresses: Sequence[str],
        start_timestamp: int,
        duration_days: int,
    ) -> Eip712Payload:
        return Eip712Payload(
            domain={"name": "Decryption", "version": "1", "chainId": 31337},
            types={"UserDecryptRequestVerification": [{"name": "publicKey", "type": "string"}]},
            primary_type="UserDecryptRequestVerification",
            message={"publicKey": public_key},
        )

    async def user_decrypt(self, handles: Sequence[HandleContractPair], *args: Any) -> dict[str, int]:
        values = [55, 1, 40, 40, 20]
        return {pair.handle: value for pair, value in zip(handles, values, strict=True)}


class _FakeRuntime:
    default_config: dict[str, Any] = {}

    def init_sdk(self) -> None:
        return None

    def create_instance(self, config: dict[str, Any]) -> _FakeInstance:
        return _FakeInstance()


@pytest.fixture
def deployments_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    path = tmp_path / "addresses.json"
    path.write_text(
        json.dumps({"31337": {"address": CONTRACT, "chainId": 31337, "chainName": "hardhat"}}),
        encoding="utf-8",
    )
    monkeypatch.setenv("DEFI_RISK_DEPLOYMENTS_FILE", str(path))
    return path


@pytest.fixture
def fake_gateway(monkeypatch: pytest.MonkeyPatch) -> type[_FakeGateway]:
    monkeypatch.setattr(cli, "Web3RiskAnalyzerGateway", _FakeGateway)
    monkeypatch.setattr(_FakeGateway, "fail_reads", False)
    return _FakeGateway


def _run(argv: list[str], capsys: pytest.CaptureFixture[str]) -> tuple[int, dict[str, Any]]:
    code = cli.main(argv)
    out = capsys.readouterr().out
    return code, json.loads(out)


class TestParser:
    def test_no_command_prints_help(self, capsys: pytest.CaptureFixture[str]) -> None:
        assert cli.main([]) == 0
        assert "defi-risk" in capsys.readouterr().out

    def test_analyze_requires_inputs(self) -> None:
        with pytest.raises(SystemExit):
            cli.create_parser().parse_args(["analyze", "--assets", "1"])


class TestStatus:
    def test_not_deployed_exit_code(
        self, fake_gateway: type[_FakeGateway], capsys: pytest.CaptureFixture[str]
    ) -> None:
        code, result = _run(["status"], capsys)
        assert code == 2
        assert result["is_deployed"] is False
        assert result["ok"] is False
        assert result["command"] == "status"

    def test_deployed(
        self,
        deployments_file: Path,
        fake_gateway: type[_FakeGateway],
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        code, result = _run(["status"], capsys)
        assert code == 0
        assert result["contract_address"] == CONTRACT
        assert result["handles"]["risk_score"] == HANDLES.risk_score
        # read-only commands never create the connector
        assert result["connector_status"] == "idle"

    def test_output_is_sorted(
        self,
        deployments_file: Path,
        fake_gateway: type[_FakeGateway],
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        cli.main(["status"])
        out = capsys.readouterr().out
        data = json.loads(out)
        assert out.strip() == json.dumps(data, sort_keys=True, indent=2)

    def test_refresh_failure_exit_code(
        self,
        deployments_file: Path,
        fake_gateway: type[_FakeGateway],
        monkeypatch: pytest.MonkeyPatch,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        monkeypatch.setattr(_FakeGateway, "fail_reads", True)
        code, result = _run(["refresh"], capsys)
        assert code == 1
        assert result["message"] == "Refresh failed: node unreachable"


class TestWriteCommands:
    def test_analyze_without_signer(
        self,
        deployments_file: Path,
        fake_gateway: type[_FakeGateway],
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        process_environment().install(_FakeRuntime())
        code, result = _run(
            ["analyze", "--assets", "1", "--risk-preference", "2", "--position-volatility", "3"],
            capsys,
        )
        assert code == 1
        assert result["error"]["code"] == "NO_SIGNER"

    def test_decrypt_end_to_end(
        self,
        deployments_file: Path,
        fake_gateway: type[_FakeGateway],
        monkeypatch: pytest.MonkeyPatch,
        tmp_path: Path,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        process_environment().install(_FakeRuntime())
        monkeypatch.setenv("DEFI_RISK_PRIVATE_KEY", HARDHAT_KEY)
        monkeypatch.setenv("DEFI_RISK_GRANT_STORE_PATH", str(tmp_path / "grants.json"))

        code, result = _run(["decrypt"], capsys)

        assert code == 0
        assert result["clear"]["risk_score"] == 55
        assert result["clear"]["risk_level_label"] == "Medium Risk"
        assert result["message"] == "Decryption completed."
        assert (tmp_path / "grants.json").exists()

    def test_connector_unavailable(
        self,
        deployments_file: Path,
        fake_gateway: type[_FakeGateway],
        monkeypatch: pytest.MonkeyPatch,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        process_environment().install(object())
        monkeypatch.setenv("DEFI_RISK_PRIVATE_KEY", HARDHAT_KEY)

        code, result = _run(["decrypt"], capsys)

        assert code == 1
        assert result["error"]["code"] == "CONNECTOR_UNAVAILABLE"
        assert result["connector_status"] == "error"


class TestConfigErrors:
    def test_invalid_env_fails_closed(
        self, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
    ) -> None:
        monkeypatch.setenv("DEFI_RISK_CHAIN_ID", "hardhat")
        code, result = _run(["status"], capsys)
        assert code == 1
        assert result["ok"] is False
        assert result["error"]["code"] == "ClientConfigError"
        assert "DEFI_RISK_CHAIN_ID" in result["error"]["message"]
