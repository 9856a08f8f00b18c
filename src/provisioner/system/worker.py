"""Worker protocol for host operations."""

from pathlib import Path
from typing import Protocol, runtime_checkable

from provisioner.system.command import Command
from provisioner.system.models import PackageInfo, UnitInfo


@runtime_checkable
class Worker(Protocol):
    """Protocol for a host that can execute commands and manage files.

    Step actions and the verifier only touch the host through this
    interface, so tests can substitute an in-memory implementation.
    """

    async def run(self, cmd: Command) -> bytes:
        """Execute a command and return its output.

        Args:
            cmd: Command to execute

        Returns:
            Combined stdout/stderr output as bytes

        Raises:
            CommandError: If the command fails
        """
        ...

    async def run_exclusive(self, cmd: Command) -> bytes:
        """Execute a command with exclusive locking.

        Only one command with the same executable can run at a time.

        Args:
            cmd: Command to execute

        Returns:
            Combined stdout/stderr output as bytes

        Raises:
            CommandError: If the command fails
        """
        ...

    async def write_file(self, filepath: Path, contents: bytes, mode: int | None = None) -> None:
        """Atomically replace a file's contents, creating parent directories.

        Raises:
            OSError: If the file cannot be written
        """
        ...

    async def read_file(self, filepath: Path) -> bytes:
        """Read a file from the filesystem.

        Raises:
            FileNotFoundError: If the file doesn't exist
        """
        ...

    async def file_mode(self, filepath: Path) -> int:
        """Permission bits of a file.

        Raises:
            FileNotFoundError: If the file doesn't exist
        """
        ...

    async def remove_file(self, filepath: Path) -> None:
        """Remove a file if it exists."""
        ...

    async def file_sha256(self, filepath: Path) -> str:
        """Compute the hex sha256 digest of a file.

        Raises:
            FileNotFoundError: If the file doesn't exist
        """
        ...

    async def download(
        self, url: str, dest: Path, retries: int = 0, mode: int | None = None
    ) -> str:
        """Fetch a URL into a local file.

        Args:
            url: Source URL
            dest: Destination path
            retries: Extra attempts on transient network errors
            mode: Optional permission bits for the downloaded file

        Returns:
            Hex sha256 digest of the downloaded content

        Raises:
            aiohttp.ClientError: If the download fails
        """
        ...

    async def extract_archive(self, archive: Path, dest: Path) -> None:
        """Unpack a tar archive into a directory.

        Raises:
            tarfile.TarError: If the archive is unreadable
        """
        ...

    async def package_info(self, package: str) -> PackageInfo:
        """Query dpkg for a package's installation state.

        Raises:
            PreconditionError: If the package database cannot be queried
        """
        ...

    async def unit_info(self, unit: str) -> UnitInfo:
        """Query systemd for a unit's state.

        Raises:
            PreconditionError: If systemd cannot be queried
        """
        ...

    def find_executable(self, name: str) -> str | None:
        """Locate an executable on PATH (or verify an absolute path)."""
        ...
