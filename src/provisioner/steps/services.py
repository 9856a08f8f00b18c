"""systemd service steps."""

from provisioner.config.models import ServiceStep
from provisioner.core.logging import get_logger
from provisioner.steps.base import BaseAction
from provisioner.system.command import Command

logger = get_logger(__name__)


class ServiceAction(BaseAction):
    """Enables, starts, restarts or stops a systemd unit."""

    step: ServiceStep

    async def apply(self) -> None:
        action = self.step.action
        if action == "daemon-reload":
            args = ["daemon-reload"]
        elif action == "enable-now":
            args = ["enable", "--now", self.step.unit]
        else:
            args = [action, self.step.unit]

        await self.system.run_exclusive(Command(executable="systemctl", args=args))
        logger.info("Service action applied", step=self.step.id, unit=self.step.unit, action=action)

    async def _builtin_check(self) -> bool | None:
        action = self.step.action
        if action == "daemon-reload":
            return None

        info = await self.system.unit_info(self.step.unit)
        if action in ("start", "restart"):
            return info.active
        if action == "stop":
            return not info.active
        if action == "enable":
            return info.enabled
        if action == "disable":
            return not info.enabled
        return info.active and info.enabled
