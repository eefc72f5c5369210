"""Shared test fixtures for homeauto-bootstrap tests.

This module provides a simulated host so the provisioning steps can run
end to end without apt, docker, git or systemd:
- SimulatedMachine: package, docker, swarm, git, venv and systemd state
- FakeRunner: CommandRunner that records invocations and answers them
  from the SimulatedMachine
- FakeHost: HostSystem with a controllable euid and recorded chowns
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from homeauto_bootstrap.config import ProvisionConfig
from homeauto_bootstrap.host import CommandResult, CommandRunner, HostSystem
from homeauto_bootstrap.provision import ProvisionContext

STACK_URL = "https://example.com/homeauto-stack-starter.git"
BRIDGE_URL = "https://github.com/YOURORG/victron-ble2mqtt-fork"

Handler = Callable[[list[str], str | None], CommandResult | None]


def strip_runuser(argv: Sequence[str]) -> list[str]:
    """Drop a leading `runuser -u USER --` wrapper."""
    argv = list(argv)
    if argv and argv[0] == "runuser" and "--" in argv:
        return argv[argv.index("--") + 1 :]
    return argv


@dataclass
class Call:
    argv: list[str]
    cwd: str | None
    env: dict[str, str]

    @property
    def command(self) -> list[str]:
        return strip_runuser(self.argv)

    @property
    def user(self) -> str:
        if self.argv and self.argv[0] == "runuser":
            return self.argv[2]
        return "root"


@dataclass
class SimulatedMachine:
    """In-memory stand-in for the host's package/docker/git/systemd state."""

    user: str = "pi"
    installed_packages: set[str] = field(default_factory=set)
    docker_installed: bool = False
    user_groups: set[str] = field(default_factory=set)
    swarm_active: bool = False
    unit_enabled: bool = False
    reachable_urls: set[str] = field(default_factory=lambda: {STACK_URL})
    fail_commands: dict[tuple[str, ...], int] = field(default_factory=dict)

    def handle(self, cmd: list[str], cwd: str | None) -> CommandResult | None:
        for prefix, code in self.fail_commands.items():
            if tuple(cmd[: len(prefix)]) == prefix:
                return CommandResult(cmd, code, stderr=f"simulated failure: {' '.join(prefix)}")

        if cmd[0] == "dpkg-query":
            names = [a for a in cmd[4:] if a in self.installed_packages]
            return CommandResult(cmd, 0, "".join(f"{n} ii \n" for n in names))
        if cmd[:2] == ["apt-get", "install"]:
            packages = [a for a in cmd[2:] if not a.startswith("-")]
            self.installed_packages.update(packages)
            if "docker.io" in packages:
                self.docker_installed = True
            return None
        if cmd[:2] == ["id", "-nG"]:
            return CommandResult(cmd, 0, " ".join([cmd[2], *sorted(self.user_groups)]) + "\n")
        if cmd[:2] == ["usermod", "-aG"]:
            self.user_groups.add(cmd[2])
            return None
        if cmd[:2] == ["docker", "info"]:
            if not self.docker_installed:
                return CommandResult(cmd, 127, stderr="docker: not found")
            return CommandResult(cmd, 0, "active\n" if self.swarm_active else "inactive\n")
        if cmd[:3] == ["docker", "swarm", "init"]:
            self.swarm_active = True
            return None
        if cmd[:2] == ["git", "clone"]:
            url, path = cmd[-2], cmd[-1]
            if url not in self.reachable_urls:
                return CommandResult(cmd, 128, stderr=f"fatal: repository '{url}' not found")
            (Path(path) / ".git").mkdir(parents=True)
            if url == STACK_URL:
                stack = Path(path) / "stack" / "home-automation.stack.yml"
                stack.parent.mkdir(parents=True)
                stack.write_text("version: '3.8'\nservices: {}\n")
            return None
        if cmd[:1] == ["git"] and "rev-parse" in cmd:
            return CommandResult(cmd, 0, "0123456789abcdef\n")
        if cmd[:3] == ["python3", "-m", "venv"]:
            python = Path(cmd[3]) / "bin" / "python3"
            python.parent.mkdir(parents=True, exist_ok=True)
            python.write_text("#!/bin/sh\n")
            python.chmod(0o755)
            return None
        if cmd[:2] == ["systemctl", "is-enabled"]:
            if self.unit_enabled:
                return CommandResult(cmd, 0, "enabled\n")
            return CommandResult(cmd, 1, "disabled\n")
        if cmd[:2] == ["systemctl", "enable"] and "--now" not in cmd:
            self.unit_enabled = True
            return None
        return None


class FakeRunner(CommandRunner):
    """Record invocations and answer them from a SimulatedMachine."""

    def __init__(self, machine: SimulatedMachine | None = None):
        self.machine = machine or SimulatedMachine()
        self.calls: list[Call] = []
        self.handlers: list[tuple[tuple[str, ...], Handler]] = []

    def on(self, prefix: Sequence[str], handler: Handler) -> None:
        """Override the answer for commands starting with `prefix`."""
        self.handlers.append((tuple(prefix), handler))

    def run(
        self,
        argv: Sequence[str],
        *,
        cwd: str | None = None,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        argv_list = list(argv)
        call = Call(argv_list, cwd, dict(env or {}))
        self.calls.append(call)
        cmd = call.command

        result = None
        for prefix, handler in reversed(self.handlers):
            if tuple(cmd[: len(prefix)]) == prefix:
                result = handler(cmd, cwd)
                break
        else:
            result = self.machine.handle(cmd, cwd)
        return result or CommandResult(argv_list, 0)

    def commands(self) -> list[str]:
        """Invoked commands (runuser wrapper stripped) as strings."""
        return [" ".join(c.command) for c in self.calls]

    def ran(self, prefix: str) -> bool:
        return any(c.startswith(prefix) for c in self.commands())


@dataclass
class FakeHost(HostSystem):
    """HostSystem with controllable privilege and recorded ownership changes."""

    euid: int = 0
    chowned: list[tuple[str, str, bool]] = field(default_factory=list)

    def geteuid(self) -> int:
        return self.euid

    def which(self, name: str) -> str | None:
        machine = getattr(self.runner, "machine", None)
        if name == "docker" and machine is not None and machine.docker_installed:
            return "/usr/bin/docker"
        return None

    def chown(self, path, user, recursive=False) -> None:
        self.chowned.append((str(path), user, recursive))


@pytest.fixture(autouse=True)
def reset_logging():
    """Detach log handlers bound to streams that pytest/CliRunner close."""
    yield
    logging.basicConfig(handlers=[logging.NullHandler()], force=True)


@pytest.fixture
def machine() -> SimulatedMachine:
    return SimulatedMachine()


@pytest.fixture
def runner(machine) -> FakeRunner:
    return FakeRunner(machine)


@pytest.fixture
def host(runner) -> FakeHost:
    return FakeHost(runner=runner)


@pytest.fixture
def config(tmp_path) -> ProvisionConfig:
    home = tmp_path / "home" / "pi"
    return ProvisionConfig(
        target_user="pi",
        home_dir=str(home),
        repo_url=STACK_URL,
        repo_local_path=str(home / "repos" / "homeauto-stack-starter"),
        branch="main",
        data_root=str(tmp_path / "srv" / "home-automation"),
        bridge_project_dir=str(home / "victron-ble2mqtt"),
        bridge_source_url=BRIDGE_URL,
        virtualenv_path=str(home / "victron-venv"),
        service_unit_path=str(tmp_path / "etc" / "systemd" / "system" / "victron_ble2mqtt.service"),
    )


@pytest.fixture
def ctx(config, host) -> ProvisionContext:
    return ProvisionContext(config=config, host=host)


@pytest.fixture
def make_bridge_project(config):
    """Lay out a bridge project checkout like the real fork."""

    def _make(entrypoint: bool = True) -> Path:
        project = Path(config.bridge_project_dir)
        (project / ".git").mkdir(parents=True, exist_ok=True)
        (project / "pyproject.toml").write_text("[project]\nname = 'victron-ble2mqtt'\n")
        if entrypoint:
            script = project / "custom" / "run_victron_python.py"
            script.parent.mkdir(parents=True, exist_ok=True)
            script.write_text("print('bridge')\n")
        return project

    return _make
