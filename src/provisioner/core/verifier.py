"""Post-step health checks."""

import asyncio
import re
from dataclasses import dataclass
from enum import Enum

from provisioner.config.models import (
    BinaryProbe,
    CommandProbe,
    Probe,
    ServiceActiveProbe,
    StepBase,
    VersionProbe,
)
from provisioner.core.errors import PreconditionError
from provisioner.core.logging import get_logger
from provisioner.system.command import Command, CommandError
from provisioner.system.worker import Worker

logger = get_logger(__name__)

VERSION_PATTERN = re.compile(r"v?(\d+(?:\.\d+)+)")

DEFAULT_PROBE_TIMEOUT = 30.0


class Health(str, Enum):
    """Verdict of a probe or a whole verification report."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ProbeResult:
    """Outcome of a single probe."""

    name: str
    health: Health
    detail: str


@dataclass(frozen=True)
class VerificationReport:
    """Probe results for one step."""

    step_id: str
    probes: tuple[ProbeResult, ...]

    @property
    def health(self) -> Health:
        """Unhealthy if any probe is, unknown if any probe is or none ran."""
        if not self.probes:
            return Health.UNKNOWN
        verdicts = {probe.health for probe in self.probes}
        if Health.UNHEALTHY in verdicts:
            return Health.UNHEALTHY
        if Health.UNKNOWN in verdicts:
            return Health.UNKNOWN
        return Health.HEALTHY

    def describe(self) -> str:
        """Details of every probe that was not healthy."""
        failing = [p for p in self.probes if p.health is not Health.HEALTHY]
        return "; ".join(f"{p.name}: {p.detail}" for p in failing)


def parse_version(text: str) -> tuple[int, ...] | None:
    """Extract the first dotted version number from command output."""
    match = VERSION_PATTERN.search(text)
    if match is None:
        return None
    return tuple(int(part) for part in match.group(1).split("."))


def version_at_least(found: tuple[int, ...], minimum: tuple[int, ...]) -> bool:
    """Compare dotted versions, treating missing components as zero."""
    width = max(len(found), len(minimum))
    padded_found = found + (0,) * (width - len(found))
    padded_minimum = minimum + (0,) * (width - len(minimum))
    return padded_found >= padded_minimum


class Verifier:
    """Runs a step's verification probes against the host.

    Probes are independent of the step's idempotency check: they confirm
    that the system actually reached the intended state, e.g. that a binary
    is present, a unit is active or a component reports the right version.
    """

    def __init__(self, system: Worker, probe_timeout: float = DEFAULT_PROBE_TIMEOUT) -> None:
        """Initialize the Verifier.

        Args:
            system: System worker used to query the host
            probe_timeout: Seconds a command probe may run before it counts as unknown
        """
        self.system = system
        self.probe_timeout = probe_timeout

    async def verify(self, step: StepBase) -> VerificationReport:
        """Run every probe declared on a step.

        Args:
            step: Step whose probes to run

        Returns:
            VerificationReport (with no probes if the step declares none)
        """
        results = []
        for probe in step.verify:
            result = await self._probe(probe)
            logger.debug(
                "Probe finished",
                step=step.id,
                probe=result.name,
                health=result.health.value,
            )
            results.append(result)
        return VerificationReport(step_id=step.id, probes=tuple(results))

    async def _probe(self, probe: Probe) -> ProbeResult:
        if isinstance(probe, BinaryProbe):
            return self._probe_binary(probe)
        if isinstance(probe, ServiceActiveProbe):
            return await self._probe_service(probe)
        if isinstance(probe, VersionProbe):
            return await self._probe_version(probe)
        return await self._probe_command(probe)

    def _probe_binary(self, probe: BinaryProbe) -> ProbeResult:
        name = f"binary {probe.binary}"
        path = self.system.find_executable(probe.binary)
        if path is None:
            return ProbeResult(name, Health.UNHEALTHY, "not found")
        return ProbeResult(name, Health.HEALTHY, f"found at {path}")

    async def _probe_service(self, probe: ServiceActiveProbe) -> ProbeResult:
        name = f"service {probe.service_active}"
        try:
            info = await self.system.unit_info(probe.service_active)
        except PreconditionError as e:
            return ProbeResult(name, Health.UNKNOWN, str(e))
        if info.active:
            return ProbeResult(name, Health.HEALTHY, "active")
        return ProbeResult(name, Health.UNHEALTHY, "not active")

    async def _probe_version(self, probe: VersionProbe) -> ProbeResult:
        requirement = probe.version
        name = f"version of '{requirement.command}'"

        try:
            output = await self._run(requirement.command)
        except CommandError as e:
            return ProbeResult(name, Health.UNHEALTHY, f"exited {e.returncode}")
        except TimeoutError:
            return ProbeResult(name, Health.UNKNOWN, f"timed out after {self.probe_timeout}s")

        found = parse_version(output)
        if found is None:
            return ProbeResult(name, Health.UNKNOWN, "no version number in output")

        # The minimum was validated as dotted digits when the plan loaded
        minimum = tuple(int(part) for part in requirement.minimum.lstrip("v").split("."))
        found_str = ".".join(map(str, found))
        if version_at_least(found, minimum):
            return ProbeResult(name, Health.HEALTHY, f"{found_str} >= {requirement.minimum}")
        return ProbeResult(
            name, Health.UNHEALTHY, f"found {found_str}, need >= {requirement.minimum}"
        )

    async def _probe_command(self, probe: CommandProbe) -> ProbeResult:
        name = f"command '{probe.command}'"
        try:
            await self._run(probe.command)
        except CommandError as e:
            return ProbeResult(name, Health.UNHEALTHY, f"exited {e.returncode}")
        except TimeoutError:
            return ProbeResult(name, Health.UNKNOWN, f"timed out after {self.probe_timeout}s")
        return ProbeResult(name, Health.HEALTHY, "exited 0")

    async def _run(self, script: str) -> str:
        output = await asyncio.wait_for(
            self.system.run(Command.shell(script)), timeout=self.probe_timeout
        )
        return output.decode("utf-8", errors="replace")
