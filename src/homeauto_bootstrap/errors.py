"""Error taxonomy for homeauto-bootstrap.

Fatal errors abort the run with a non-zero exit status. Tolerable errors
are raised inside best-effort code paths, recorded in the ledger and the
sequence continues.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .host import CommandResult

# Process exit codes
EXIT_FAILURE = 1
EXIT_CONFIG_ERROR = 2


class BootstrapError(Exception):
    """Base error class for bootstrap errors."""

    exit_code: int = EXIT_FAILURE

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConfigurationError(BootstrapError):
    """A configuration value could not be resolved or is unsafe."""

    exit_code = EXIT_CONFIG_ERROR

    def __init__(self, message: str, field_name: str | None = None):
        super().__init__(message)
        self.field_name = field_name


class PrivilegeError(BootstrapError, PermissionError):
    """The process lacks administrative privilege."""


class HostError(BootstrapError):
    """A filesystem or account operation on the host failed."""


class CommandError(BootstrapError):
    """An external command exited non-zero."""

    def __init__(self, result: CommandResult):
        detail = (result.stderr or result.stdout or "").strip()
        message = f"Command failed ({result.returncode}): {result.command_line}"
        if detail:
            message = f"{message}\n{detail}"
        super().__init__(message)
        self.result = result


class TolerableStepError(BootstrapError):
    """A best-effort action failed; logged, never aborts the run."""


@dataclass(eq=False)
class FatalStepError(BootstrapError):
    """A mandatory step failed and the remaining sequence was aborted."""

    step_id: str
    reason: str
    completed_steps: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        BootstrapError.__init__(self, f"Step {self.step_id} failed: {self.reason}")
