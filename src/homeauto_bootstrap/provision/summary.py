"""Closing summary: how to inspect what was provisioned."""

from __future__ import annotations

from ..shared.logging import get_logger
from .base import ProvisionContext, Step, StepResult
from .docker import STACK_NAME
from .service import unit_name

logger = get_logger(__name__)


def inspection_commands(ctx: ProvisionContext) -> list[list[str]]:
    return [
        ["docker", "stack", "services", STACK_NAME],
        ["systemctl", "status", unit_name(ctx.config), "--no-pager"],
    ]


class SummaryStep(Step):
    step_id = "summary"
    description = "Report how to inspect the resulting services"
    mandatory = False

    def apply(self, ctx: ProvisionContext) -> StepResult:
        cfg = ctx.config
        logger.info("Bootstrap complete")
        for argv in inspection_commands(ctx):
            logger.info("Check services", command=" ".join(argv))
        logger.info(
            "Override defaults via env vars when re-running",
            example=(
                f"sudo USERNAME={cfg.target_user} REPO_URL={cfg.repo_url} "
                f"VIC_GIT_URL={cfg.bridge_source_url or '<bridge-repo-url>'} homeauto-bootstrap"
            ),
        )
        return self.changed("Summary reported")
