"""systemd unit for the BLE-to-MQTT bridge.

The unit file is fully owned by the bootstrap: every run converges it to
the rendered template, whatever it contained before.
"""

from __future__ import annotations

from pathlib import Path

from ..config import ProvisionConfig
from ..shared.logging import get_logger
from .base import ProvisionContext, Step, StepResult
from .runtime import venv_python

logger = get_logger(__name__)

SERVICE_NAME = "victron_ble2mqtt"
ENTRYPOINT = "custom/run_victron_python.py"

UNIT_TEMPLATE = """\
[Unit]
Description={service} (Python launcher)
After=network-online.target docker.service bluetooth.service mosquitto.service
Wants=network-online.target bluetooth.service

[Service]
Type=simple
User={user}
Group={user}
WorkingDirectory={project_dir}
Environment=PYTHONUNBUFFERED=1
ExecStart={python} {entrypoint}
Restart=always
RestartSec=5
SyslogIdentifier={service}

[Install]
WantedBy=multi-user.target
"""


def entrypoint_path(config: ProvisionConfig) -> Path:
    return Path(config.bridge_project_dir) / ENTRYPOINT


def unit_name(config: ProvisionConfig) -> str:
    return Path(config.service_unit_path).name


def render_unit(config: ProvisionConfig) -> str:
    """Instantiate the unit template with the configuration bundle."""
    return UNIT_TEMPLATE.format(
        service=SERVICE_NAME,
        user=config.target_user,
        project_dir=config.bridge_project_dir,
        python=venv_python(config),
        entrypoint=entrypoint_path(config),
    )


class ServiceUnitStep(Step):
    step_id = "service_unit"
    description = "Install, enable and (when ready) restart the bridge service"

    def apply(self, ctx: ProvisionContext) -> StepResult:
        cfg = ctx.config
        unit = unit_name(cfg)
        actions = []
        notes = []

        desired = render_unit(cfg)
        if ctx.host.read_text(cfg.service_unit_path) != desired:
            logger.info("Installing systemd unit", path=cfg.service_unit_path)
            ctx.host.write_text(cfg.service_unit_path, desired, mode=0o644)
            actions.append(f"wrote {cfg.service_unit_path}")

        ctx.host.run(["systemctl", "daemon-reload"])
        enabled = ctx.host.run(["systemctl", "is-enabled", unit], check=False)
        if enabled.stdout.strip() != "enabled":
            ctx.host.run(["systemctl", "enable", unit])
            actions.append(f"enabled {unit}")

        python = venv_python(cfg)
        entrypoint = entrypoint_path(cfg)
        if not (ctx.host.is_executable(python) and ctx.host.is_file(entrypoint)):
            logger.info("Bridge project not ready yet; service will start after project is in place")
            notes.append(f"{unit} not started: {python} or {entrypoint} missing")
        else:
            restarted = ctx.host.run(["systemctl", "restart", unit], check=False)
            if not restarted.ok:
                started = ctx.host.run(["systemctl", "start", unit], check=False)
                if not started.ok:
                    logger.warning("Could not start service", unit=unit, error=started.stderr.strip())
                    return self.tolerated(
                        f"{unit} failed to start: {started.stderr.strip()}",
                        actions,
                    )
            actions.append(f"restarted {unit}")

        if actions:
            return self.changed("; ".join(actions), notes)
        return self.skipped(f"{unit} installed and enabled", notes)
