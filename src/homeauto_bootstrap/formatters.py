"""CLI output formatting helpers."""

from __future__ import annotations

from collections.abc import Sequence

import click
import yaml
from rich.console import Console
from rich.table import Table
from rich.text import Text

from .config import ENV_VARS, ProvisionConfig
from .provision import StackStatus, Step, StepStatus
from .sequencer import ExecutionLedger

_STATUS_STYLES = {
    StepStatus.SUCCESS: "green",
    StepStatus.SKIPPED: "dim",
    StepStatus.TOLERATED: "yellow",
    StepStatus.FAILED: "red",
}


def print_config_yaml(config: ProvisionConfig) -> None:
    """Print the resolved configuration with the source of each value."""
    click.echo("homeauto-bootstrap configuration:\n")
    for key, value in config.as_dict().items():
        source = config.get_source(key)
        click.echo(f"  {key}: {value}  ({source}, ${ENV_VARS[key]})")
    click.echo()
    click.echo(yaml.safe_dump(config.as_dict(), default_flow_style=False, sort_keys=False), nl=False)


def print_steps(steps: Sequence[Step]) -> None:
    for number, step in enumerate(steps, start=1):
        policy = "mandatory" if step.mandatory else "tolerable"
        click.echo(f"{number:>2}. {step.step_id:<15} [{policy}] {step.description}")


def print_ledger(ledger: ExecutionLedger, console: Console | None = None) -> None:
    """Render the step outcomes of a run as a table."""
    console = console or Console()
    table = Table(title="Provisioning summary")
    table.add_column("Step")
    table.add_column("Status")
    table.add_column("Detail")
    for result in ledger.results:
        style = _STATUS_STYLES[result.status]
        detail = result.message
        if result.notes:
            detail = "\n".join([detail, *result.notes]) if detail else "\n".join(result.notes)
        table.add_row(result.step_id, Text(result.status.value, style=style), Text(detail))
    console.print(table)


def print_stack_status(status: StackStatus) -> None:
    click.echo(f"Stack state: {status.state.value}")
    if status.message:
        click.echo(f"  {status.message}")
    if status.running_services:
        click.echo("Running services:")
        for svc in status.running_services:
            click.echo(f"  ✓ {svc}")
    if status.pending_services:
        click.echo("Pending services:")
        for svc in status.pending_services:
            click.echo(f"  ✗ {svc}")
