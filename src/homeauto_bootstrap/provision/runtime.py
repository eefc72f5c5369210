"""Virtualenv for the bridge application."""

from __future__ import annotations

from pathlib import Path

from ..config import ProvisionConfig
from ..shared.logging import get_logger
from .base import ProvisionContext, Step, StepResult

logger = get_logger(__name__)

BOOTSTRAP_TOOLS = ("pip", "wheel", "setuptools")
# Files that make the bridge project pip-installable
PROJECT_FILES = ("pyproject.toml", "setup.py")
REQUIREMENTS_FILE = "requirements.txt"
BRIDGE_EXTRA_PACKAGES = ("bleak",)


def venv_python(config: ProvisionConfig) -> Path:
    return Path(config.virtualenv_path) / "bin" / "python3"


def venv_pip(config: ProvisionConfig) -> Path:
    return Path(config.virtualenv_path) / "bin" / "pip"


class BridgeRuntimeStep(Step):
    step_id = "bridge_runtime"
    description = "Create the bridge virtualenv and install its dependencies"

    def apply(self, ctx: ProvisionContext) -> StepResult:
        cfg = ctx.config
        pip = str(venv_pip(cfg))
        actions = []

        if ctx.host.is_executable(venv_python(cfg)):
            logger.info("Updating Python venv", path=cfg.virtualenv_path)
        else:
            logger.info("Creating Python venv", path=cfg.virtualenv_path)
            ctx.run_as_user(["python3", "-m", "venv", cfg.virtualenv_path])
            actions.append("created venv")

        ctx.run_as_user([pip, "install", "--upgrade", *BOOTSTRAP_TOOLS])

        project = Path(cfg.bridge_project_dir)
        if not ctx.host.is_dir(project):
            logger.info("Bridge project not present; installed base tooling only", path=str(project))
            return self.changed(", ".join(actions + ["upgraded packaging tools"]))

        if any(ctx.host.is_file(project / name) for name in PROJECT_FILES):
            ctx.run_as_user([pip, "install", "-U", str(project)])
            actions.append("installed bridge project")
        if ctx.host.is_file(project / REQUIREMENTS_FILE):
            ctx.run_as_user([pip, "install", "-U", "-r", str(project / REQUIREMENTS_FILE)])
            actions.append("installed requirements")
        ctx.run_as_user([pip, "install", "-U", *BRIDGE_EXTRA_PACKAGES])
        actions.append(f"installed {', '.join(BRIDGE_EXTRA_PACKAGES)}")

        return self.changed(", ".join(actions))
