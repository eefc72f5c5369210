"""User directories and base OS packages."""

from __future__ import annotations

from ..shared.logging import get_logger
from .base import ProvisionContext, Step, StepResult

logger = get_logger(__name__)

USER_SUBDIRS = ("repos", "bin")

BASE_PACKAGES = (
    "git",
    "curl",
    "ca-certificates",
    "gnupg",
    "lsb-release",
    "python3",
    "python3-venv",
    "python3-pip",
    "bluetooth",
    "bluez",
    "libbluetooth-dev",
    "libglib2.0-dev",
    "pkg-config",
)

APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}


def installed_packages(ctx: ProvisionContext, packages: tuple[str, ...]) -> set[str]:
    """Return the subset of `packages` dpkg reports as installed.

    dpkg-query exits non-zero when some names are unknown but still prints
    the known ones, so the exit status is ignored.
    """
    result = ctx.host.run(
        ["dpkg-query", "-W", "-f", "${Package} ${db:Status-Abbrev}\n", *packages],
        check=False,
    )
    installed = set()
    for line in result.stdout.splitlines():
        parts = line.split()
        if len(parts) >= 2 and parts[1].startswith("ii"):
            installed.add(parts[0])
    return installed


class UserDirectoriesStep(Step):
    step_id = "user_dirs"
    description = "Ensure the target user's working directories exist"

    def apply(self, ctx: ProvisionContext) -> StepResult:
        cfg = ctx.config
        created = []
        for name in USER_SUBDIRS:
            path = f"{cfg.home_dir}/{name}"
            if ctx.host.makedirs(path):
                created.append(path)
            ctx.host.chown(path, cfg.target_user, recursive=True)

        if created:
            return self.changed(f"Created {', '.join(created)}")
        return self.skipped("User directories present")


class BasePackagesStep(Step):
    step_id = "base_packages"
    description = "Install base OS packages"

    def __init__(self, packages: tuple[str, ...] = BASE_PACKAGES):
        self.packages = packages

    def apply(self, ctx: ProvisionContext) -> StepResult:
        installed = installed_packages(ctx, self.packages)
        missing = [p for p in self.packages if p not in installed]
        if not missing:
            return self.skipped("All base packages installed")

        logger.info("Updating apt and installing base packages", packages=missing)
        ctx.host.run(["apt-get", "update", "-y"], env=APT_ENV)
        ctx.host.run(["apt-get", "install", "-y", *missing], env=APT_ENV)
        return self.changed(f"Installed {len(missing)} package(s)")
