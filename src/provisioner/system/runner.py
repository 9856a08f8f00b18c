"""Host command runner implementation."""

import asyncio
import os
import shutil
import signal
import stat
import sys
import tarfile
import tempfile
from pathlib import Path

from provisioner.core.errors import PreconditionError
from provisioner.core.logging import get_logger
from provisioner.system.command import Command, CommandError
from provisioner.system.fetch import Fetcher, sha256_file
from provisioner.system.models import PackageInfo, UnitInfo

logger = get_logger(__name__)


def _get_shell_path() -> str:
    """Get path to the shell to use for command execution.

    Returns:
        Path to shell executable

    Raises:
        RuntimeError: If no shell can be found
    """
    shell = os.getenv("SHELL")
    if shell:
        return shell

    for candidate in ["bash", "/bin/bash", "sh", "/bin/sh"]:
        if Path(candidate).exists():
            return candidate
        path = shutil.which(candidate)
        if path:
            return path

    raise RuntimeError("Could not find path to a shell")


def _kill_process_group(process: asyncio.subprocess.Process) -> None:
    """Kill a child process together with everything it spawned."""
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass


class System:
    """System implementation that acts on the local machine.

    This class implements the Worker protocol: it executes commands, manages
    files, downloads artifacts, and queries dpkg and systemd.
    """

    def __init__(self, trace: bool = False, fetcher: Fetcher | None = None) -> None:
        """Initialize the System.

        Args:
            trace: Print every command together with its output
            fetcher: HTTP fetcher used for downloads
        """
        self._trace = trace
        self._shell = _get_shell_path()
        self._command_locks: dict[str, asyncio.Lock] = {}
        self._fetcher = fetcher or Fetcher()

    async def run(self, cmd: Command) -> bytes:
        """Execute a command and return its output.

        The command runs in its own process group. If the awaiting task is
        cancelled (timeout or interrupt) the whole group is killed before the
        cancellation propagates.

        Args:
            cmd: Command to execute

        Returns:
            Combined stdout/stderr output as bytes

        Raises:
            CommandError: If the command fails
        """
        command_string = cmd.command_string
        log_ctx = {"user": cmd.user} if cmd.user else {}
        logger.debug("Starting command", command=command_string, **log_ctx)

        process = await asyncio.create_subprocess_shell(
            command_string,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            executable=self._shell,
            start_new_session=True,
        )

        try:
            stdout, _ = await process.communicate()
        except asyncio.CancelledError:
            _kill_process_group(process)
            await process.wait()
            logger.warning("Killed interrupted command", command=command_string)
            raise

        output_str = stdout.decode("utf-8", errors="replace")
        if self._trace:
            self._print_trace(command_string, output_str)

        if process.returncode != 0:
            returncode = process.returncode if process.returncode is not None else 1
            raise CommandError(command_string, returncode, output_str)

        logger.debug("Finished command", command=command_string)
        return stdout

    async def run_exclusive(self, cmd: Command) -> bytes:
        """Execute a command with exclusive locking per executable.

        Args:
            cmd: Command to execute

        Returns:
            Combined stdout/stderr output as bytes

        Raises:
            CommandError: If the command fails
        """
        lock = self._command_locks.setdefault(cmd.executable, asyncio.Lock())
        async with lock:
            return await self.run(cmd)

    async def write_file(self, filepath: Path, contents: bytes, mode: int | None = None) -> None:
        """Atomically replace a file's contents, creating parent directories.

        Args:
            filepath: Absolute path of the file
            contents: File contents to write
            mode: Optional permission bits

        Raises:
            OSError: If the file cannot be written
        """
        filepath.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(dir=filepath.parent, prefix=f".{filepath.name}.")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(contents)
                f.flush()
                os.fsync(f.fileno())
            if mode is not None:
                os.chmod(tmp_name, mode)
            elif filepath.exists():
                os.chmod(tmp_name, filepath.stat().st_mode & 0o7777)
            else:
                os.chmod(tmp_name, 0o644)
            os.replace(tmp_name, filepath)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

        logger.debug("Wrote file", path=str(filepath))

    async def read_file(self, filepath: Path) -> bytes:
        """Read a file from the filesystem.

        Raises:
            FileNotFoundError: If the file doesn't exist
        """
        if not filepath.exists():
            raise FileNotFoundError(f"File '{filepath}' does not exist")
        return filepath.read_bytes()

    async def file_mode(self, filepath: Path) -> int:
        """Permission bits of a file.

        Raises:
            FileNotFoundError: If the file doesn't exist
        """
        return stat.S_IMODE(filepath.stat().st_mode)

    async def remove_file(self, filepath: Path) -> None:
        """Remove a file if it exists."""
        filepath.unlink(missing_ok=True)
        logger.debug("Removed file", path=str(filepath))

    async def file_sha256(self, filepath: Path) -> str:
        """Compute the hex sha256 digest of a file.

        Raises:
            FileNotFoundError: If the file doesn't exist
        """
        return await asyncio.to_thread(sha256_file, filepath)

    async def download(
        self, url: str, dest: Path, retries: int = 0, mode: int | None = None
    ) -> str:
        """Fetch a URL into a local file and return its sha256 digest."""
        digest = await self._fetcher.fetch(url, dest, retries=retries)
        if mode is not None:
            os.chmod(dest, mode)
        return digest

    async def extract_archive(self, archive: Path, dest: Path) -> None:
        """Unpack a tar archive (any compression) into a directory."""

        def _extract() -> None:
            dest.mkdir(parents=True, exist_ok=True)
            with tarfile.open(archive) as tar:
                tar.extractall(dest, filter="tar")

        await asyncio.to_thread(_extract)
        logger.debug("Extracted archive", archive=str(archive), dest=str(dest))

    async def package_info(self, package: str) -> PackageInfo:
        """Query dpkg for a package's installation state.

        Raises:
            PreconditionError: If dpkg-query is not available
        """
        if shutil.which("dpkg-query") is None:
            raise PreconditionError("dpkg-query is not available on this host")

        cmd = Command(
            executable="dpkg-query",
            args=["-W", "-f=${db:Status-Status} ${Version}", package],
        )
        try:
            output = await self.run(cmd)
        except CommandError:
            # dpkg-query exits 1 for packages it has never seen
            return PackageInfo(installed=False)

        status, _, version = output.decode("utf-8", errors="replace").strip().partition(" ")
        if status != "installed":
            return PackageInfo(installed=False)
        return PackageInfo(installed=True, version=version)

    async def unit_info(self, unit: str) -> UnitInfo:
        """Query systemd for a unit's state.

        Raises:
            PreconditionError: If systemctl is not available
        """
        if shutil.which("systemctl") is None:
            raise PreconditionError("systemctl is not available on this host")

        return UnitInfo(
            active=await self._systemctl_query("is-active", unit),
            enabled=await self._systemctl_query("is-enabled", unit),
        )

    def find_executable(self, name: str) -> str | None:
        """Locate an executable on PATH (or verify an absolute path)."""
        if os.path.isabs(name):
            return name if os.access(name, os.X_OK) else None
        return shutil.which(name)

    async def _systemctl_query(self, verb: str, unit: str) -> bool:
        try:
            await self.run(Command(executable="systemctl", args=[verb, "--quiet", unit]))
        except CommandError:
            return False
        return True

    def _print_trace(self, command: str, output: str) -> None:
        """Print trace output for a command.

        Args:
            command: The command that was executed
            output: The command output
        """
        print(f"\n\033[1;32;4mCommand:\033[0m \033[1m{command}\033[0m", file=sys.stderr)
        if output:
            print(f"\033[1;32mOutput:\033[0m\n{output}", file=sys.stderr)
