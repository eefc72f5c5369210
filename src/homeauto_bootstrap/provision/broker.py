"""On-host data root and the Mosquitto broker configuration.

The broker configuration is created only when absent. An existing file
belongs to the operator and is never rewritten.
"""

from __future__ import annotations

from pathlib import Path

from ..config import ProvisionConfig
from ..shared.logging import get_logger
from .base import ProvisionContext, Step, StepResult

logger = get_logger(__name__)

DATA_SUBDIRS = ("mosquitto/config", "homeassistant", "node-red")
BROKER_CONFIG = "mosquitto/config/mosquitto.conf"


def render_broker_config(port: int, allow_anonymous: bool) -> str:
    """Render mosquitto.conf for the stack's broker container."""
    return "\n".join(
        [
            "persistence true",
            "persistence_location /mosquitto/data/",
            "log_dest stdout",
            "log_timestamp true",
            f"listener {port} 0.0.0.0",
            f"allow_anonymous {'true' if allow_anonymous else 'false'}",
            "",
        ]
    )


def broker_config_path(config: ProvisionConfig) -> Path:
    return Path(config.data_root) / BROKER_CONFIG


class BrokerConfigStep(Step):
    step_id = "broker_config"
    description = "Prepare the data root and create the broker config if missing"
    mandatory = False

    def apply(self, ctx: ProvisionContext) -> StepResult:
        cfg = ctx.config
        actions = []

        logger.info("Preparing data root", path=cfg.data_root)
        for name in DATA_SUBDIRS:
            if ctx.host.makedirs(Path(cfg.data_root) / name):
                actions.append(f"created {name}")
        ctx.host.chown(cfg.data_root, cfg.target_user, recursive=True)

        conf = broker_config_path(cfg)
        if ctx.host.exists(conf):
            logger.info("Keeping existing broker config", path=str(conf))
        else:
            if cfg.broker_allow_anonymous:
                logger.warning("Broker config allows anonymous clients", port=cfg.broker_port)
            ctx.host.write_text(conf, render_broker_config(cfg.broker_port, cfg.broker_allow_anonymous))
            ctx.host.chown(conf, cfg.target_user)
            actions.append(f"wrote {conf}")

        if actions:
            return self.changed("; ".join(actions))
        return self.skipped("Data root and broker config present")
