"""defi-risk CLI - Drive the risk analyzer session from the command line.

Usage:
    python -m defi_risk status
    python -m defi_risk refresh
    python -m defi_risk analyze --assets N --risk-preference N --position-volatility N
    python -m defi_risk decrypt

All settings come from DEFI_RISK_* environment variables (see defi_risk.config).
Every command prints the session state as deterministic JSON.

Exit codes:
    0: Success
    1: Operation failed / Internal error
    2: Contract not deployed on the configured chain
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

from defi_risk.config import ClientConfig, load_client_config
from defi_risk.contracts.deployments import load_deployments
from defi_risk.contracts.gateway import RiskAnalyzerGateway, Web3RiskAnalyzerGateway
from defi_risk.errors import DefiRiskError
from defi_risk.fhevm.decryption_grant import GrantPolicy
from defi_risk.fhevm.lifecycle import ConnectorLifecycle, ConnectorStatus
from defi_risk.fhevm.loader import ConnectorLoader, process_environment
from defi_risk.observability.tracing import configure_tracing
from defi_risk.services.risk_analyzer.session import RiskAnalyzerSession
from defi_risk.signers import LocalAccountSigner, Signer
from defi_risk.storage import InMemoryStringStorage, JsonFileStringStorage, StringStorage

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_NOT_DEPLOYED = 2

# Commands that never touch the confidential-compute runtime
READ_ONLY_COMMANDS = frozenset({"status", "refresh"})


def _output_json(data: dict[str, Any]) -> None:
    """Output JSON to stdout with deterministic ordering."""
    print(json.dumps(data, sort_keys=True, indent=2))


def _make_error_result(code: str, message: str) -> dict[str, Any]:
    """Create an error payload with a single error."""
    return {"error": {"code": code, "message": message}, "ok": False}


def build_session(config: ClientConfig, *, with_connector: bool) -> RiskAnalyzerSession:
    """Wire a session from configuration.

    Args:
        config: Client configuration.
        with_connector: Create the confidential-compute connector on connect.
    """
    storage: StringStorage
    if config.grant_store_path is not None:
        storage = JsonFileStringStorage(config.grant_store_path)
    else:
        storage = InMemoryStringStorage()

    loader = ConnectorLoader(
        process_environment(),
        runtime_url=config.runtime_url,
        expected_sha256=config.runtime_sha256,
        timeout_seconds=config.http_timeout_seconds,
        max_retries=config.http_max_retries,
    )
    lifecycle = ConnectorLifecycle(loader, mock_chains=config.mock_chains, enabled=with_connector)

    def gateway_factory(provider: str, chain_id: int) -> RiskAnalyzerGateway:
        return Web3RiskAnalyzerGateway.from_rpc_url(
            provider, chain_id=chain_id, timeout_seconds=config.http_timeout_seconds
        )

    return RiskAnalyzerSession(
        lifecycle=lifecycle,
        deployments=load_deployments(config.deployments_file),
        gateway_factory=gateway_factory,
        grant_storage=storage,
        grant_policy=GrantPolicy(validity_days=config.grant_validity_days),
    )


def _signer_from_config(config: ClientConfig) -> Signer | None:
    if config.private_key is None:
        return None
    return LocalAccountSigner.from_key(config.private_key)


def _session_result(session: RiskAnalyzerSession, command: str, ok: bool) -> dict[str, Any]:
    result = session.describe()
    result["command"] = command
    result["ok"] = ok
    return result


async def _run(args: argparse.Namespace, config: ClientConfig) -> int:
    command: str = args.command
    session = build_session(config, with_connector=command not in READ_ONLY_COMMANDS)
    await session.switch_wallet(
        provider=config.rpc_url,
        chain_id=config.chain_id,
        signer=_signer_from_config(config),
    )

    if not session.is_deployed:
        _output_json(_session_result(session, command, False))
        return EXIT_NOT_DEPLOYED

    if command in READ_ONLY_COMMANDS:
        ok = not session.message.startswith("Refresh failed")
        _output_json(_session_result(session, command, ok))
        return EXIT_OK if ok else EXIT_FAILED

    if session.lifecycle.status != ConnectorStatus.READY:
        error = session.lifecycle.error
        result = _session_result(session, command, False)
        result["error"] = {
            "code": "CONNECTOR_UNAVAILABLE",
            "message": str(error) if error is not None else session.lifecycle.status_text,
        }
        _output_json(result)
        return EXIT_FAILED

    if session.signer is None:
        result = _session_result(session, command, False)
        result["error"] = {"code": "NO_SIGNER", "message": "DEFI_RISK_PRIVATE_KEY is not set"}
        _output_json(result)
        return EXIT_FAILED

    if command == "analyze":
        await session.analyze(args.assets, args.risk_preference, args.position_volatility)
        ok = not session.message.startswith("Analyze failed")
    else:
        await session.decrypt_all()
        ok = session.clear is not None and session.message == "Decryption completed."

    _output_json(_session_result(session, command, ok))
    return EXIT_OK if ok else EXIT_FAILED


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="defi-risk",
        description="Confidential DeFi risk analyzer client",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    subparsers.add_parser("status", help="Show deployment, connector and handle state")
    subparsers.add_parser("refresh", help="Re-read the encrypted result handles")

    analyze_parser = subparsers.add_parser(
        "analyze",
        help="Encrypt portfolio inputs and submit them for analysis",
    )
    analyze_parser.add_argument(
        "--assets",
        required=True,
        metavar="N",
        help="Total assets (32-bit unsigned integer)",
    )
    analyze_parser.add_argument(
        "--risk-preference",
        required=True,
        metavar="N",
        help="Risk preference (32-bit unsigned integer)",
    )
    analyze_parser.add_argument(
        "--position-volatility",
        required=True,
        metavar="N",
        help="Position volatility (32-bit unsigned integer)",
    )

    subparsers.add_parser("decrypt", help="Decrypt all five result handles")

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point.

    Exit codes:
        0: Success
        1: Operation failed / Internal error (unexpected)
        2: Contract not deployed on the configured chain
    """
    try:
        parser = create_parser()
        args = parser.parse_args(argv)

        if args.command is None:
            parser.print_help()
            return EXIT_OK

        config = load_client_config()
        logging.basicConfig(
            level=config.log_level,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
            stream=sys.stderr,
        )
        configure_tracing()

        return asyncio.run(_run(args, config))

    except DefiRiskError as e:
        _output_json(_make_error_result(type(e).__name__, str(e)))
        return EXIT_FAILED
    except Exception as e:
        # Fail-closed: unexpected errors return exit code 1
        logger.exception("Unexpected CLI failure")
        _output_json(_make_error_result("INTERNAL_ERROR", str(e)))
        return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
