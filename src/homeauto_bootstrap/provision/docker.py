"""Docker Engine, swarm mode and stack deployment.

`SwarmStackManager` wraps `docker stack` for the deploy step and for the
`status` command; the steps below keep the engine, the docker group
membership and swarm mode converged.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from ..errors import HostError
from ..host import HostSystem
from ..shared.logging import get_logger
from .base import ProvisionContext, Step, StepResult
from .system import APT_ENV

logger = get_logger(__name__)

DOCKER_PACKAGES = ("docker.io", "docker-compose-plugin")
DOCKER_GROUP = "docker"
STACK_NAME = "homeauto"
STACK_FILE = "stack/home-automation.stack.yml"


class StackState(Enum):
    """State of the swarm stack."""

    NOT_FOUND = "not_found"  # Stack not deployed
    PARTIAL = "partial"  # Some services below desired replicas
    RUNNING = "running"  # All services at desired replicas


@dataclass
class StackStatus:
    """Status of the swarm stack."""

    state: StackState
    running_services: list[str] = field(default_factory=list)
    pending_services: list[str] = field(default_factory=list)
    message: str = ""


def _replicas_satisfied(replicas: str) -> bool:
    """Parse docker's "current/desired" replica column ("1/1", "0/1 (max 1 per node)")."""
    counts = replicas.split()[0] if replicas.strip() else ""
    current, sep, desired = counts.partition("/")
    if not sep:
        return False
    try:
        return int(current) >= int(desired)
    except ValueError:
        return False


class SwarmStackManager:
    """Manage the home-automation swarm stack."""

    def __init__(self, host: HostSystem, stack_name: str = STACK_NAME):
        self.host = host
        self.stack_name = stack_name

    def deploy(self, repo_dir: str, user: str, home: str) -> None:
        """Deploy or update the stack from the checked-out stack definition."""
        stack_file = Path(repo_dir) / STACK_FILE
        if not self.host.is_file(stack_file):
            raise HostError(f"Stack definition not found: {stack_file}")
        self.host.run(
            ["docker", "stack", "deploy", "-c", STACK_FILE, self.stack_name],
            as_user=user,
            home=home,
            cwd=repo_dir,
        )

    def services_table(self) -> str:
        """Human-readable `docker stack services` output (empty on error)."""
        result = self.host.run(["docker", "stack", "services", self.stack_name], check=False)
        return result.stdout.strip() if result.ok else ""

    def status(self) -> StackStatus:
        """Get current stack status.

        Returns:
            StackStatus with current state and service information.
        """
        result = self.host.run(
            ["docker", "stack", "services", self.stack_name, "--format", "{{json .}}"],
            check=False,
        )
        if not result.ok:
            return StackStatus(
                StackState.NOT_FOUND,
                message=result.stderr.strip() or "Stack not deployed",
            )

        services = []
        for line in result.stdout.splitlines():
            if line.strip():
                try:
                    services.append(json.loads(line))
                except json.JSONDecodeError:
                    logger.debug("Skipping unparsable service line", line=line)

        if not services:
            return StackStatus(StackState.NOT_FOUND, message="No services found")

        running = [s.get("Name", "unknown") for s in services if _replicas_satisfied(s.get("Replicas", ""))]
        pending = [s.get("Name", "unknown") for s in services if not _replicas_satisfied(s.get("Replicas", ""))]

        state = StackState.RUNNING if not pending else StackState.PARTIAL
        return StackStatus(state, running, pending)


class DockerEngineStep(Step):
    step_id = "docker_engine"
    description = "Install Docker Engine and grant the target user docker access"

    def apply(self, ctx: ProvisionContext) -> StepResult:
        user = ctx.config.target_user
        actions = []
        notes = []

        if ctx.host.which("docker") is None:
            logger.info("Installing Docker Engine via apt")
            ctx.host.run(["apt-get", "update", "-y"], env=APT_ENV)
            ctx.host.run(["apt-get", "install", "-y", *DOCKER_PACKAGES], env=APT_ENV)
            ctx.host.run(["systemctl", "enable", "--now", "docker"])
            actions.append("installed Docker Engine")
        else:
            logger.info("Docker already installed")

        if DOCKER_GROUP not in ctx.host.user_groups(user):
            result = ctx.host.run(["usermod", "-aG", DOCKER_GROUP, user], check=False)
            if result.ok:
                actions.append(f"added {user} to the {DOCKER_GROUP} group")
                notes.append("Log out and back in for the docker group to take effect")
            else:
                logger.warning("Could not add user to docker group", user=user, error=result.stderr.strip())
                notes.append(f"usermod failed for {user}: {result.stderr.strip()}")

        if actions:
            return self.changed("; ".join(actions), notes)
        return self.skipped("Docker installed and user in docker group", notes)


class SwarmStep(Step):
    step_id = "swarm"
    description = "Initialize Docker swarm mode"

    def apply(self, ctx: ProvisionContext) -> StepResult:
        result = ctx.host.run(["docker", "info", "--format", "{{.Swarm.LocalNodeState}}"])
        if result.stdout.strip().lower() == "active":
            return self.skipped("Docker swarm already active")

        logger.info("Initializing Docker swarm")
        ctx.host.run(["docker", "swarm", "init"])
        return self.changed("Docker swarm initialized")


class StackDeployStep(Step):
    step_id = "stack_deploy"
    description = "Deploy the home-automation swarm stack"

    def apply(self, ctx: ProvisionContext) -> StepResult:
        cfg = ctx.config
        manager = SwarmStackManager(ctx.host)
        manager.deploy(cfg.repo_local_path, cfg.target_user, cfg.home_dir)

        table = manager.services_table()
        if table:
            logger.info("Stack services", stack=manager.stack_name, services=table)
        return self.changed(f"Stack {manager.stack_name} deployed")
