"""Shared fixtures: an in-memory stand-in for the host."""

import asyncio
import hashlib
import re
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from provisioner.config.models import PlanConfig
from provisioner.core.errors import PreconditionError
from provisioner.system.command import Command, CommandError
from provisioner.system.models import PackageInfo, UnitInfo

Handler = Callable[[Command], bytes]


class FakeSystem:
    """Worker implementation that records calls instead of touching the host.

    Commands are answered by handlers registered with ``on``; the first
    handler whose pattern matches the command string wins. Unmatched
    commands succeed with empty output.
    """

    def __init__(self) -> None:
        self.files: dict[Path, bytes] = {}
        self.modes: dict[Path, int] = {}
        self.packages: dict[str, str] = {}
        self.units: dict[str, UnitInfo] = {}
        self.executables: dict[str, str] = {}
        self.artifacts: dict[str, bytes] = {}
        self.download_delay = 0.0
        self.download_errors: dict[str, Exception] = {}
        self.systemd_available = True
        self.dpkg_available = True
        self.file_errors: dict[Path, OSError] = {}

        self.commands: list[str] = []
        self.writes: list[Path] = []
        self.downloads: list[str] = []
        self.extracted: list[tuple[Path, Path]] = []
        self._handlers: list[tuple[re.Pattern[str], Handler]] = []

    def on(self, pattern: str, handler: Handler | bytes) -> None:
        if isinstance(handler, bytes):
            output = handler

            def handler(cmd: Command) -> bytes:
                return output

        self._handlers.append((re.compile(pattern), handler))

    def fail(self, pattern: str, returncode: int = 1, output: str = "failed") -> None:
        def handler(cmd: Command) -> bytes:
            raise CommandError(cmd.command_string, returncode, output)

        self.on(pattern, handler)

    def ran(self, pattern: str) -> bool:
        return any(re.search(pattern, c) for c in self.commands)

    @property
    def mutations(self) -> list[Any]:
        return [*self.writes, *self.downloads, *self.extracted]

    async def run(self, cmd: Command) -> bytes:
        command_string = cmd.command_string
        self.commands.append(command_string)
        for pattern, handler in self._handlers:
            if pattern.search(command_string):
                return handler(cmd)
        return b""

    async def run_exclusive(self, cmd: Command) -> bytes:
        return await self.run(cmd)

    async def write_file(self, filepath: Path, contents: bytes, mode: int | None = None) -> None:
        self.writes.append(filepath)
        self.files[filepath] = contents
        self.modes[filepath] = mode if mode is not None else 0o644

    async def read_file(self, filepath: Path) -> bytes:
        if filepath not in self.files:
            raise FileNotFoundError(f"File '{filepath}' does not exist")
        return self.files[filepath]

    async def file_mode(self, filepath: Path) -> int:
        if filepath not in self.files:
            raise FileNotFoundError(f"File '{filepath}' does not exist")
        return self.modes[filepath]

    async def remove_file(self, filepath: Path) -> None:
        self.files.pop(filepath, None)

    async def file_sha256(self, filepath: Path) -> str:
        if filepath in self.file_errors:
            raise self.file_errors[filepath]
        if filepath not in self.files:
            raise FileNotFoundError(f"File '{filepath}' does not exist")
        return hashlib.sha256(self.files[filepath]).hexdigest()

    async def download(
        self, url: str, dest: Path, retries: int = 0, mode: int | None = None
    ) -> str:
        self.downloads.append(url)
        if self.download_delay:
            await asyncio.sleep(self.download_delay)
        if url in self.download_errors:
            raise self.download_errors[url]
        content = self.artifacts.get(url, url.encode())
        self.files[dest] = content
        self.modes[dest] = mode if mode is not None else 0o644
        return hashlib.sha256(content).hexdigest()

    async def extract_archive(self, archive: Path, dest: Path) -> None:
        self.extracted.append((archive, dest))

    async def package_info(self, package: str) -> PackageInfo:
        if not self.dpkg_available:
            raise PreconditionError("dpkg-query is not available on this host")
        if package in self.packages:
            return PackageInfo(installed=True, version=self.packages[package])
        return PackageInfo(installed=False)

    async def unit_info(self, unit: str) -> UnitInfo:
        if not self.systemd_available:
            raise PreconditionError("systemctl is not available on this host")
        return self.units.get(unit, UnitInfo(active=False, enabled=False))

    def find_executable(self, name: str) -> str | None:
        return self.executables.get(name)


def make_plan(*steps: dict[str, Any], **sections: Any) -> PlanConfig:
    """Build a validated plan from raw step documents."""
    return PlanConfig.model_validate({"steps": list(steps), **sections})


@pytest.fixture
def system() -> FakeSystem:
    return FakeSystem()


@pytest.fixture
def state_path(tmp_path: Path) -> Path:
    return tmp_path / "state" / "state.yaml"
