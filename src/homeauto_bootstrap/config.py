"""Provisioning configuration.

Resolves the configuration bundle once at startup.
Precedence (highest to lowest):
1. Environment variables
2. Config file (/etc/homeauto-bootstrap/config.yaml or --config)
3. Defaults, some derived from already-resolved values
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigurationError

DEFAULT_CONFIG_PATH = Path("/etc/homeauto-bootstrap/config.yaml")

# Default values
FALLBACK_USER = "pi"
DEFAULT_REPO_URL = "https://github.com/YOURORG/homeauto-stack-starter"
DEFAULT_BRANCH = "main"
DEFAULT_DATA_ROOT = "/srv/home-automation"
DEFAULT_BRIDGE_SOURCE_URL = "https://github.com/YOURORG/victron-ble2mqtt-fork"
DEFAULT_SERVICE_UNIT_PATH = "/etc/systemd/system/victron_ble2mqtt.service"
DEFAULT_BROKER_PORT = 1883

# Environment variable mappings
ENV_VARS = {
    "target_user": "USERNAME",
    "home_dir": "HOME_DIR",
    "repo_url": "REPO_URL",
    "repo_local_path": "REPO_DIR",
    "branch": "BRANCH",
    "data_root": "SRC_ROOT",
    "bridge_project_dir": "VIC_PROJECT_DIR",
    "bridge_source_url": "VIC_GIT_URL",
    "virtualenv_path": "VENV_DIR",
    "service_unit_path": "UNIT_PATH",
    "broker_port": "BROKER_PORT",
    "broker_allow_anonymous": "BROKER_ALLOW_ANONYMOUS",
}

# Characters that would change meaning inside a shell command line or a
# systemd unit file (% starts a specifier there).
UNSAFE_CHARACTERS = frozenset(";&|`$<>()\\\"'*?![]{}#%")

# May be set to "" in the config file to skip cloning the bridge project
OPTIONAL_FIELDS = frozenset({"bridge_source_url"})

# URLs only reach git as a single argv item, never a shell or the unit file,
# so percent-encoding, queries and fragments are allowed there.
URL_FIELDS = frozenset({"repo_url", "bridge_source_url"})
URL_ALLOWED_CHARACTERS = frozenset("%?#")

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class ProvisionConfig:
    """Immutable configuration bundle for one provisioning run."""

    target_user: str
    home_dir: str
    repo_url: str
    repo_local_path: str
    branch: str
    data_root: str
    bridge_project_dir: str
    bridge_source_url: str
    virtualenv_path: str
    service_unit_path: str
    broker_port: int = DEFAULT_BROKER_PORT
    broker_allow_anonymous: bool = True

    # Track where each value came from
    _sources: dict[str, str] = field(default_factory=dict, compare=False, repr=False)

    def get_source(self, key: str) -> str:
        """Get the source of a config value."""
        return self._sources.get(key, "default")

    def as_dict(self) -> dict[str, Any]:
        """Return the public fields as a plain mapping."""
        return {f.name: getattr(self, f.name) for f in fields(self) if not f.name.startswith("_")}


def get_config_path() -> Path:
    """Get the default config file path."""
    return DEFAULT_CONFIG_PATH


def _read_config_file(path: Path) -> dict[str, Any]:
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigurationError(f"Cannot read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in config file {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")

    unknown = sorted(set(data) - set(ENV_VARS))
    if unknown:
        raise ConfigurationError(
            f"Unknown keys in config file {path}: {', '.join(unknown)}"
        )
    return data


def _parse_port(value: Any) -> int:
    try:
        port = int(str(value).strip())
    except ValueError as e:
        raise ConfigurationError(f"Invalid broker port: {value!r}", "broker_port") from e
    if not 0 < port < 65536:
        raise ConfigurationError(f"Broker port out of range: {port}", "broker_port")
    return port


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise ConfigurationError(
        f"Invalid boolean for broker_allow_anonymous: {value!r}", "broker_allow_anonymous"
    )


def validate_value(
    name: str,
    value: str,
    optional: bool = False,
    allowed: frozenset[str] = frozenset(),
) -> str:
    """Reject empty values and values carrying shell metacharacters.

    Characters in `allowed` are exempt from the unsafe set.
    """
    if not value and not optional:
        raise ConfigurationError(f"{name} resolved to an empty value", name)
    unsafe = UNSAFE_CHARACTERS - allowed
    bad = sorted({c for c in value if c in unsafe or c.isspace()})
    if bad:
        shown = " ".join(repr(c) for c in bad)
        raise ConfigurationError(f"{name} contains unsafe characters: {shown}", name)
    return value


def load_config(
    environ: Mapping[str, str] | None = None,
    config_path: str | Path | None = None,
) -> ProvisionConfig:
    """Resolve the configuration bundle.

    Args:
        environ: Environment mapping (default: os.environ)
        config_path: Explicit config file. When omitted, the default path is
            used only if it exists.

    Returns:
        ProvisionConfig with values and sources

    Raises:
        ConfigurationError: If a value cannot be resolved or is unsafe.
    """
    env = os.environ if environ is None else environ

    file_config: dict[str, Any] = {}
    if config_path is not None:
        file_config = _read_config_file(Path(config_path))
    else:
        default_path = get_config_path()
        if default_path.exists():
            file_config = _read_config_file(default_path)

    values: dict[str, Any] = {}
    sources: dict[str, str] = {}

    def resolve(key: str, default: Any, default_source: str = "default") -> Any:
        env_value = env.get(ENV_VARS[key], "")
        if env_value:
            sources[key] = "environment"
            values[key] = env_value
        elif key in file_config and file_config[key] is not None:
            sources[key] = "config file"
            values[key] = file_config[key]
        else:
            sources[key] = default_source
            values[key] = default
        return values[key]

    sudo_user = env.get("SUDO_USER", "")
    if sudo_user:
        user = resolve("target_user", sudo_user, "environment")
    else:
        user = resolve("target_user", FALLBACK_USER)
    user = validate_value("target_user", str(user).strip())
    values["target_user"] = user

    home = validate_value("home_dir", str(resolve("home_dir", f"/home/{user}", "derived")).strip())
    values["home_dir"] = home

    resolve("repo_url", DEFAULT_REPO_URL)
    resolve("repo_local_path", f"{home}/repos/homeauto-stack-starter", "derived")
    resolve("branch", DEFAULT_BRANCH)
    resolve("data_root", DEFAULT_DATA_ROOT)
    resolve("bridge_project_dir", f"{home}/victron-ble2mqtt", "derived")
    resolve("bridge_source_url", DEFAULT_BRIDGE_SOURCE_URL)
    resolve("virtualenv_path", f"{home}/victron-venv", "derived")
    resolve("service_unit_path", DEFAULT_SERVICE_UNIT_PATH)

    for key in (
        "repo_url",
        "repo_local_path",
        "branch",
        "data_root",
        "bridge_project_dir",
        "bridge_source_url",
        "virtualenv_path",
        "service_unit_path",
    ):
        values[key] = validate_value(
            key,
            str(values[key]).strip(),
            optional=key in OPTIONAL_FIELDS,
            allowed=URL_ALLOWED_CHARACTERS if key in URL_FIELDS else frozenset(),
        )

    values["broker_port"] = _parse_port(resolve("broker_port", DEFAULT_BROKER_PORT))
    values["broker_allow_anonymous"] = _parse_bool(resolve("broker_allow_anonymous", True))

    return ProvisionConfig(**values, _sources=sources)
