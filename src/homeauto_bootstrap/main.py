"""CLI main entry point."""

from __future__ import annotations

import json
import sys

import click

from . import __version__
from .config import ENV_VARS, load_config
from .errors import ConfigurationError, FatalStepError, PrivilegeError
from .formatters import print_config_yaml, print_ledger, print_stack_status, print_steps
from .host import HostSystem
from .provision import SwarmStackManager
from .provision.service import unit_name
from .sequencer import Sequencer, build_steps
from .shared.logging import configure_logging, get_logger

logger = get_logger(__name__)


def _load_config_or_exit(ctx: click.Context):
    try:
        return load_config(config_path=ctx.obj["config_path"])
    except ConfigurationError as e:
        logger.error("Configuration error", error=e.message, field=e.field_name)
        sys.exit(e.exit_code)


def _host(ctx: click.Context) -> HostSystem:
    host = ctx.obj.get("host")
    if host is None:
        host = HostSystem()
        ctx.obj["host"] = host
    return host


@click.group(invoke_without_command=True)
@click.version_option(__version__, prog_name="homeauto-bootstrap")
@click.option("-c", "--config", type=click.Path(dir_okay=False), help="YAML config file")
@click.option("-v", "--verbose", count=True, help="Increase verbosity")
@click.option("-q", "--quiet", is_flag=True, help="Only log warnings and errors")
@click.option("--json", "json_output", is_flag=True, help="Log and print as JSON")
@click.option("--log-file", type=click.Path(dir_okay=False), help="Also write logs to this file")
@click.pass_context
def cli(
    ctx: click.Context,
    config: str | None,
    verbose: int,
    quiet: bool,
    json_output: bool,
    log_file: str | None,
) -> None:
    """Provision a Debian host with the home-automation stack.

    Installs Docker, enables swarm mode, prepares the broker config,
    deploys the stack and installs the BLE-to-MQTT bridge service. Safe to
    re-run: every step checks the host before acting.

    Examples:

        sudo homeauto-bootstrap

        sudo USERNAME=pi REPO_URL=https://github.com/yourorg/homeauto-stack-starter \\
             VIC_GIT_URL=https://github.com/yourorg/victron-ble2mqtt-fork homeauto-bootstrap
    """
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config
    ctx.obj["json_output"] = json_output

    level = "warning" if quiet else ("debug" if verbose else "info")
    configure_logging(level=level, log_file=log_file, json_output=json_output)

    if ctx.invoked_subcommand is None:
        ctx.invoke(run)


@cli.command()
@click.option("--start-at", default=None, help="Start at this step id")
@click.option("--stop-after", default=None, help="Stop after this step id")
@click.pass_context
def run(ctx: click.Context, start_at: str | None, stop_after: str | None) -> None:
    """Run the provisioning steps (default command)."""
    config = _load_config_or_exit(ctx)
    sequencer = Sequencer(config, host=_host(ctx))

    try:
        ledger = sequencer.run(start_at=start_at, stop_after=stop_after)
    except PrivilegeError as e:
        logger.error(e.message)
        click.echo("Please run with sudo:  sudo homeauto-bootstrap", err=True)
        sys.exit(e.exit_code)
    except ConfigurationError as e:
        logger.error("Configuration error", error=e.message)
        sys.exit(e.exit_code)
    except FatalStepError as e:
        logger.error("Provisioning aborted", step=e.step_id, error=e.reason)
        if not ctx.obj["json_output"]:
            print_ledger(sequencer.ledger)
        sys.exit(e.exit_code)

    if not ctx.obj["json_output"]:
        print_ledger(ledger)


@cli.command()
def steps() -> None:
    """List the provisioning steps in execution order."""
    print_steps(build_steps())


@cli.group()
def config() -> None:
    """Inspect the resolved configuration."""


@config.command("show")
@click.pass_context
def config_show(ctx: click.Context) -> None:
    """Show the resolved configuration and where each value came from."""
    cfg = _load_config_or_exit(ctx)
    if ctx.obj["json_output"]:
        data = {
            "values": cfg.as_dict(),
            "sources": {key: cfg.get_source(key) for key in cfg.as_dict()},
            "env_vars": ENV_VARS,
        }
        click.echo(json.dumps(data, indent=2))
    else:
        print_config_yaml(cfg)


@cli.command()
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show the swarm stack and bridge service status."""
    cfg = _load_config_or_exit(ctx)
    host = _host(ctx)

    print_stack_status(SwarmStackManager(host).status())

    unit = unit_name(cfg)
    active = host.run(["systemctl", "is-active", unit], check=False)
    click.echo(f"Service {unit}: {active.stdout.strip() or 'unknown'}")


def main() -> None:
    """Console script entry point."""
    cli(obj={})
