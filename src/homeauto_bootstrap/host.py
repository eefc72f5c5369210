"""Host access for the provisioning steps.

`CommandRunner` executes external tools (apt-get, docker, git, systemctl,
pip) as argv lists. `HostSystem` combines the runner with the filesystem
and account probes the steps use for check-then-act decisions. Tests swap
in fakes for either one.
"""

from __future__ import annotations

import os
import shlex
import shutil
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from .errors import CommandError, HostError
from .shared.logging import get_logger

logger = get_logger(__name__)

# Conventional shell status for "command not found"
EXIT_NOT_FOUND = 127


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one external command."""

    argv: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def command_line(self) -> str:
        return shlex.join(self.argv)


class CommandRunner:
    """Run external commands with subprocess, one attempt each."""

    def run(
        self,
        argv: Sequence[str],
        *,
        cwd: str | None = None,
        env: Mapping[str, str] | None = None,
    ) -> CommandResult:
        """Run a command and capture its output.

        Args:
            argv: Command and arguments. Never interpreted by a shell.
                stdin is closed, so tools that would prompt fail instead.
            cwd: Working directory.
            env: Extra environment variables layered over os.environ.

        Returns:
            CommandResult. A missing executable yields return code 127.
        """
        argv_list = list(argv)
        try:
            proc = subprocess.run(
                argv_list,
                stdin=subprocess.DEVNULL,
                capture_output=True,
                text=True,
                cwd=cwd,
                env=dict(os.environ, **(env or {})),
            )
        except FileNotFoundError as e:
            return CommandResult(argv_list, EXIT_NOT_FOUND, stderr=str(e))
        return CommandResult(argv_list, proc.returncode, proc.stdout or "", proc.stderr or "")


@dataclass
class HostSystem:
    """Probe and mutate the local host.

    Commands go through `runner`; everything else touches the local
    filesystem directly.
    """

    runner: CommandRunner = field(default_factory=CommandRunner)

    def run(
        self,
        argv: Sequence[str],
        *,
        as_user: str | None = None,
        home: str | None = None,
        cwd: str | None = None,
        env: Mapping[str, str] | None = None,
        check: bool = True,
    ) -> CommandResult:
        """Run a command as the administrator or as `as_user`.

        Raises:
            CommandError: If check is True and the command exits non-zero.
        """
        argv_list = list(argv)
        extra_env = dict(env or {})
        if as_user and as_user != "root":
            argv_list = ["runuser", "-u", as_user, "--", *argv_list]
            if home:
                extra_env.setdefault("HOME", home)

        result = self.runner.run(argv_list, cwd=cwd, env=extra_env or None)
        logger.info(
            "Ran command",
            command=shlex.join(argv),
            user=as_user or "root",
            returncode=result.returncode,
        )
        if result.stdout.strip():
            logger.debug("Command stdout", output=result.stdout.strip())
        if result.stderr.strip():
            logger.debug("Command stderr", output=result.stderr.strip())

        if check and not result.ok:
            raise CommandError(result)
        return result

    # Privilege and tool lookup

    def geteuid(self) -> int:
        return os.geteuid()

    def which(self, name: str) -> str | None:
        return shutil.which(name)

    def user_groups(self, user: str) -> set[str]:
        """Return the group names `user` belongs to (empty if unknown)."""
        result = self.run(["id", "-nG", user], check=False)
        if not result.ok:
            return set()
        return set(result.stdout.split())

    # Filesystem probes

    def exists(self, path: str | Path) -> bool:
        return Path(path).exists()

    def is_dir(self, path: str | Path) -> bool:
        return Path(path).is_dir()

    def is_file(self, path: str | Path) -> bool:
        return Path(path).is_file()

    def is_executable(self, path: str | Path) -> bool:
        p = Path(path)
        return p.is_file() and os.access(p, os.X_OK)

    def read_text(self, path: str | Path) -> str | None:
        """Return file content, or None if the file does not exist.

        Undecodable bytes become U+FFFD so callers comparing against rendered
        text see a mismatch instead of an error.
        """
        p = Path(path)
        if not p.is_file():
            return None
        return p.read_text(encoding="utf-8", errors="replace")

    # Filesystem mutations

    def makedirs(self, path: str | Path) -> bool:
        """Create a directory tree. Returns True if it was missing."""
        p = Path(path)
        if p.is_dir():
            return False
        try:
            p.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise HostError(f"Cannot create directory {p}: {e}") from e
        return True

    def write_text(self, path: str | Path, content: str, mode: int | None = None) -> None:
        p = Path(path)
        try:
            p.parent.mkdir(parents=True, exist_ok=True)
            p.write_text(content, encoding="utf-8")
            if mode is not None:
                p.chmod(mode)
        except OSError as e:
            raise HostError(f"Cannot write {p}: {e}") from e

    def chown(self, path: str | Path, user: str, recursive: bool = False) -> None:
        """Give `path` (and with recursive, everything below) to user:user."""
        root = Path(path)
        targets = [root]
        if recursive and root.is_dir():
            targets.extend(p for p in root.rglob("*") if not p.is_symlink())
        try:
            for target in targets:
                shutil.chown(target, user=user, group=user)
        except LookupError as e:
            raise HostError(f"Unknown user or group {user!r}: {e}") from e
        except OSError as e:
            raise HostError(f"Cannot change owner of {root}: {e}") from e
