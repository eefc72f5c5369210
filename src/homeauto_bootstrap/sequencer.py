"""Ordered, resumable execution of the provisioning steps."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

from .config import ProvisionConfig
from .errors import (
    BootstrapError,
    ConfigurationError,
    FatalStepError,
    PrivilegeError,
    TolerableStepError,
)
from .host import HostSystem
from .provision import (
    BasePackagesStep,
    BridgeProjectStep,
    BridgeRuntimeStep,
    BrokerConfigStep,
    DockerEngineStep,
    ProvisionContext,
    ServiceUnitStep,
    StackDeployStep,
    StackRepoStep,
    Step,
    StepResult,
    StepStatus,
    SummaryStep,
    SwarmStep,
    UserDirectoriesStep,
)
from .shared.logging import get_logger

logger = get_logger(__name__)


def build_steps() -> list[Step]:
    return [
        UserDirectoriesStep(),
        BasePackagesStep(),
        DockerEngineStep(),
        SwarmStep(),
        BrokerConfigStep(),
        StackRepoStep(),
        StackDeployStep(),
        BridgeProjectStep(),
        BridgeRuntimeStep(),
        ServiceUnitStep(),
        SummaryStep(),
    ]


def require_admin(host: HostSystem) -> None:
    """Fail fast unless running with administrative privilege."""
    if host.geteuid() != 0:
        raise PrivilegeError("Administrative privilege required; re-run with sudo")


@dataclass
class ExecutionLedger:
    """Step outcomes of the current run. Never persisted."""

    results: list[StepResult] = field(default_factory=list)

    def record(self, result: StepResult) -> None:
        self.results.append(result)

    def by_status(self, status: StepStatus) -> list[str]:
        return [r.step_id for r in self.results if r.status == status]

    @property
    def failed(self) -> StepResult | None:
        for r in self.results:
            if r.status == StepStatus.FAILED:
                return r
        return None

    @property
    def completed_steps(self) -> list[str]:
        return [r.step_id for r in self.results if r.status != StepStatus.FAILED]

    def summary(self) -> str:
        counts = {s: len(self.by_status(s)) for s in StepStatus}
        return " ".join(f"{s.name}={n}" for s, n in counts.items())


def select_steps(
    steps: Sequence[Step],
    start_at: str | None = None,
    stop_after: str | None = None,
) -> list[Step]:
    """Slice the ordered step list by step id (both bounds inclusive)."""
    ids = [s.step_id for s in steps]
    for name in (start_at, stop_after):
        if name is not None and name not in ids:
            raise ConfigurationError(f"Unknown step: {name} (known: {', '.join(ids)})")

    begin = ids.index(start_at) if start_at else 0
    end = ids.index(stop_after) + 1 if stop_after else len(ids)
    if begin >= end:
        raise ConfigurationError(f"--start-at {start_at} comes after --stop-after {stop_after}")
    return list(steps[begin:end])


class Sequencer:
    """Run provisioning steps in order.

    Each step reports an explicit StepResult. A failed mandatory step stops
    the run and raises FatalStepError; tolerable failures are recorded and
    the run continues. Re-running from the top is always safe because every
    step checks host state before acting.
    """

    def __init__(
        self,
        config: ProvisionConfig,
        host: HostSystem | None = None,
        steps: Sequence[Step] | None = None,
    ):
        self.context = ProvisionContext(config=config, host=host or HostSystem())
        self.steps = list(steps) if steps is not None else build_steps()
        self.ledger = ExecutionLedger()

    def run(self, start_at: str | None = None, stop_after: str | None = None) -> ExecutionLedger:
        """Execute the (optionally sliced) step list.

        Raises:
            PrivilegeError: If not running as root.
            ConfigurationError: If start_at/stop_after name unknown steps.
            FatalStepError: If a mandatory step fails.
        """
        selected = select_steps(self.steps, start_at, stop_after)
        require_admin(self.context.host)

        self.ledger = ExecutionLedger()
        for step in selected:
            result = self._execute(step)
            self.ledger.record(result)
            if result.status == StepStatus.FAILED:
                raise FatalStepError(step.step_id, result.message, self.ledger.completed_steps)

        logger.info("Provisioning finished", summary=self.ledger.summary())
        return self.ledger

    def _execute(self, step: Step) -> StepResult:
        log = logger.bind(step=step.step_id)
        log.info(step.description or "Running step")
        try:
            result = step.apply(self.context)
        except TolerableStepError as e:
            log.warning("Step failed, continuing", error=e.message)
            return StepResult(step.step_id, StepStatus.TOLERATED, e.message)
        except (BootstrapError, OSError) as e:
            message = getattr(e, "message", None) or str(e)
            if step.mandatory:
                log.error("Step failed, aborting", error=message)
                return StepResult(step.step_id, StepStatus.FAILED, message)
            log.warning("Step failed, continuing", error=message)
            return StepResult(step.step_id, StepStatus.TOLERATED, message)

        for note in result.notes:
            log.info("Note", note=note)
        log.info("Step finished", status=result.status.value, detail=result.message)
        return result
