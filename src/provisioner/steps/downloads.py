"""Artifact download steps."""

import tarfile
from pathlib import Path

import aiohttp

from provisioner.config.models import DownloadStep
from provisioner.core.errors import ExecutionError
from provisioner.core.logging import get_logger
from provisioner.steps.base import BaseAction

logger = get_logger(__name__)


class DownloadAction(BaseAction):
    """Fetches an artifact, verifies its digest and optionally unpacks it.

    A download whose digest does not match is deleted so that the next run
    fetches it again instead of trusting a bad artifact.
    """

    step: DownloadStep

    @property
    def dest(self) -> Path:
        return Path(self.step.dest)

    @property
    def expected_digest(self) -> str:
        return self.step.checksum.removeprefix("sha256:")

    async def apply(self) -> None:
        """Download, verify and unpack the artifact.

        Raises:
            ExecutionError: On network failure, digest mismatch or a bad archive
        """
        try:
            digest = await self.system.download(
                self.step.url, self.dest, retries=self.step.retries, mode=self.step.mode_bits
            )
        except (aiohttp.ClientError, TimeoutError) as e:
            raise ExecutionError(f"download of {self.step.url} failed: {e!r}") from e

        if self.expected_digest and digest != self.expected_digest:
            await self.system.remove_file(self.dest)
            raise ExecutionError(
                f"checksum mismatch for {self.step.url}: "
                f"expected sha256:{self.expected_digest}, got sha256:{digest}"
            )

        logger.info("Downloaded artifact", step=self.step.id, url=self.step.url)

        if self.step.extract_to:
            try:
                await self.system.extract_archive(self.dest, Path(self.step.extract_to))
            except tarfile.TarError as e:
                raise ExecutionError(f"cannot extract {self.dest}: {e}") from e
            logger.info("Extracted artifact", step=self.step.id, dest=self.step.extract_to)

    async def _builtin_check(self) -> bool:
        try:
            digest = await self.system.file_sha256(self.dest)
        except FileNotFoundError:
            return False
        return not self.expected_digest or digest == self.expected_digest
