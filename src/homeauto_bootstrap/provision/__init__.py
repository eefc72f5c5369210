"""Convergence steps for provisioning a home-automation host.

Steps run in this order:
1. User directories
2. Base OS packages
3. Docker Engine and docker group membership
4. Docker swarm mode
5. Data root and broker config (create if missing)
6. Stack definition repository
7. Stack deployment
8. Bridge project checkout (best effort)
9. Bridge virtualenv
10. Bridge systemd unit
11. Summary
"""

from .base import ProvisionContext, Step, StepResult, StepStatus
from .broker import BrokerConfigStep, render_broker_config
from .docker import (
    DockerEngineStep,
    StackDeployStep,
    StackState,
    StackStatus,
    SwarmStackManager,
    SwarmStep,
)
from .repos import BridgeProjectStep, GitCheckout, StackRepoStep
from .runtime import BridgeRuntimeStep
from .service import ServiceUnitStep, render_unit
from .summary import SummaryStep, inspection_commands
from .system import BasePackagesStep, UserDirectoriesStep

__all__ = [
    # Contract
    "ProvisionContext",
    "Step",
    "StepResult",
    "StepStatus",
    # Steps, in execution order
    "UserDirectoriesStep",
    "BasePackagesStep",
    "DockerEngineStep",
    "SwarmStep",
    "BrokerConfigStep",
    "StackRepoStep",
    "StackDeployStep",
    "BridgeProjectStep",
    "BridgeRuntimeStep",
    "ServiceUnitStep",
    "SummaryStep",
    # Helpers
    "GitCheckout",
    "StackState",
    "StackStatus",
    "SwarmStackManager",
    "inspection_commands",
    "render_broker_config",
    "render_unit",
]
