"""Shell command steps."""

from provisioner.config.models import ShellStep
from provisioner.core.logging import get_logger
from provisioner.steps.base import BaseAction
from provisioner.system.command import Command

logger = get_logger(__name__)


class ShellAction(BaseAction):
    """Runs a step's script through the shell.

    Shell steps have no built-in idempotency check; without an explicit
    ``check`` a recorded success is trusted as-is.
    """

    step: ShellStep

    async def apply(self) -> None:
        await self.system.run(Command.shell(self.step.command, user=self.step.user))
        logger.debug("Ran shell step", step=self.step.id)
