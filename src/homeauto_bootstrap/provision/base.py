"""Step contract shared by every provisioning step."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum

from ..config import ProvisionConfig
from ..host import CommandResult, HostSystem


class StepStatus(Enum):
    """Outcome of a single step."""

    SUCCESS = "success"  # Host changed to reach the target condition
    SKIPPED = "skipped"  # Target condition already held
    TOLERATED = "tolerated"  # Best-effort action failed, run continues
    FAILED = "failed"  # Mandatory step failed, run aborts


@dataclass
class StepResult:
    """Result of applying one step."""

    step_id: str
    status: StepStatus
    message: str = ""
    notes: list[str] = field(default_factory=list)


@dataclass
class ProvisionContext:
    """Everything a step needs: the resolved config and the host."""

    config: ProvisionConfig
    host: HostSystem

    def run_as_user(
        self,
        argv: Sequence[str],
        *,
        cwd: str | None = None,
        env: Mapping[str, str] | None = None,
        check: bool = True,
    ) -> CommandResult:
        """Run a command as the target user with HOME pointing at their home."""
        return self.host.run(
            argv,
            as_user=self.config.target_user,
            home=self.config.home_dir,
            cwd=cwd,
            env=env,
            check=check,
        )


class Step:
    """A check-then-act convergence step.

    Subclasses set `step_id`, `description` and `mandatory` and implement
    `apply()`. Raising from `apply()` fails a mandatory step; for a
    tolerable step the error is recorded and the run continues.
    """

    step_id: str = ""
    description: str = ""
    mandatory: bool = True

    def apply(self, ctx: ProvisionContext) -> StepResult:
        raise NotImplementedError

    def changed(self, message: str, notes: list[str] | None = None) -> StepResult:
        return StepResult(self.step_id, StepStatus.SUCCESS, message, notes or [])

    def skipped(self, message: str, notes: list[str] | None = None) -> StepResult:
        return StepResult(self.step_id, StepStatus.SKIPPED, message, notes or [])

    def tolerated(self, message: str, notes: list[str] | None = None) -> StepResult:
        return StepResult(self.step_id, StepStatus.TOLERATED, message, notes or [])

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.step_id}>"
