"""File write steps."""

from pathlib import Path

from provisioner.config.models import FileStep
from provisioner.core.errors import PreconditionError
from provisioner.core.logging import get_logger
from provisioner.steps.base import BaseAction

logger = get_logger(__name__)


class FileAction(BaseAction):
    """Writes a file with exact content.

    The whole file is replaced, so applying the step twice leaves the same
    file behind rather than duplicated lines.
    """

    step: FileStep

    @property
    def path(self) -> Path:
        return Path(self.step.path)

    async def apply(self) -> None:
        await self.system.write_file(
            self.path, self.step.content.encode("utf-8"), mode=self.step.mode_bits
        )
        logger.info("Wrote file", step=self.step.id, path=self.step.path)

    async def _builtin_check(self) -> bool:
        try:
            current = await self.system.read_file(self.path)
        except FileNotFoundError:
            return False
        except PermissionError as e:
            raise PreconditionError(f"cannot read {self.path}: {e}") from e

        if current != self.step.content.encode("utf-8"):
            return False
        if self.step.mode_bits is not None:
            return await self.system.file_mode(self.path) == self.step.mode_bits
        return True
