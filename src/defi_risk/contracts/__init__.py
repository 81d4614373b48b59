"""DeFiRiskAnalyzer contract access: ABI, deployment resolution and gateway."""

from defi_risk.contracts.deployments import (
    ContractDeployment,
    DeploymentBook,
    load_deployments,
)

__all__ = ["ContractDeployment", "DeploymentBook", "load_deployments"]
