"""Git checkouts: the stack definition repository and the bridge project."""

from __future__ import annotations

from pathlib import Path

from ..errors import CommandError, TolerableStepError
from ..shared.logging import get_logger
from .base import ProvisionContext, Step, StepResult

logger = get_logger(__name__)

# Unknown HTTPS repos make git ask for credentials on the terminal
GIT_ENV = {"GIT_TERMINAL_PROMPT": "0"}


class GitCheckout:
    """A git working copy owned by the target user."""

    def __init__(self, ctx: ProvisionContext, path: str):
        self.ctx = ctx
        self.path = path

    def exists(self) -> bool:
        return self.ctx.host.is_dir(self.path)

    def is_checkout(self) -> bool:
        return self.ctx.host.is_dir(Path(self.path) / ".git")

    def _git(self, *args: str, check: bool = True):
        return self.ctx.run_as_user(["git", *args], env=GIT_ENV, check=check)

    def head(self) -> str:
        result = self._git("-C", self.path, "rev-parse", "HEAD", check=False)
        return result.stdout.strip() if result.ok else ""

    def clone(self, url: str, branch: str | None = None) -> None:
        args = ["clone"]
        if branch:
            args += ["--branch", branch]
        self._git(*args, url, self.path)

    def sync(self, branch: str) -> None:
        """Fetch all remotes, switch to `branch` and fast-forward it."""
        self._git("-C", self.path, "fetch", "--all")
        self._git("-C", self.path, "checkout", branch)
        self.pull()

    def pull(self) -> None:
        self._git("-C", self.path, "pull", "--ff-only")


class StackRepoStep(Step):
    step_id = "stack_repo"
    description = "Clone or fast-forward the stack definition repository"

    def apply(self, ctx: ProvisionContext) -> StepResult:
        cfg = ctx.config
        repo = GitCheckout(ctx, cfg.repo_local_path)
        logger.info("Ensuring stack repo present", path=cfg.repo_local_path, branch=cfg.branch)

        if repo.is_checkout():
            before = repo.head()
            repo.sync(cfg.branch)
            after = repo.head()
            if before and before == after:
                return self.skipped(f"Stack repo up to date on {cfg.branch}")
            return self.changed(f"Stack repo updated to {after[:12] or cfg.branch}")

        repo.clone(cfg.repo_url, cfg.branch)
        return self.changed(f"Cloned {cfg.repo_url} ({cfg.branch})")


class BridgeProjectStep(Step):
    step_id = "bridge_project"
    description = "Clone or update the BLE-to-MQTT bridge project"
    mandatory = False

    def apply(self, ctx: ProvisionContext) -> StepResult:
        cfg = ctx.config
        project = GitCheckout(ctx, cfg.bridge_project_dir)
        logger.info("Ensuring bridge project present", path=cfg.bridge_project_dir)

        if not project.exists():
            if not cfg.bridge_source_url:
                raise TolerableStepError(
                    f"No bridge source URL configured and {cfg.bridge_project_dir} not found; skipping clone"
                )
            try:
                project.clone(cfg.bridge_source_url)
            except CommandError as e:
                raise TolerableStepError(f"Could not clone {cfg.bridge_source_url}: {e.message}") from e
            return self.changed(f"Cloned {cfg.bridge_source_url}")

        if not project.is_checkout():
            return self.skipped("Found existing bridge project (not a git checkout)")

        try:
            project.pull()
        except CommandError as e:
            raise TolerableStepError(f"Could not update bridge project: {e.message}") from e
        return self.skipped("Found existing bridge project; pulled latest")
