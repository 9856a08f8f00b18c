"""Debian package steps for installing and removing apt packages."""

from provisioner.config.models import PackageStep
from provisioner.core.errors import PreconditionError
from provisioner.core.logging import get_logger
from provisioner.steps.base import BaseAction
from provisioner.system.command import Command, CommandError
from provisioner.system.models import PackageSpec
from provisioner.system.worker import Worker

logger = get_logger(__name__)


class PackageAction(BaseAction):
    """Installs or removes packages via apt.

    apt and dpkg calls go through ``run_exclusive`` so concurrent steps never
    contend for the dpkg lock.
    """

    step: PackageStep

    def __init__(self, step: PackageStep, system: Worker) -> None:
        super().__init__(step, system)
        self.packages = [PackageSpec.from_string(p) for p in step.packages]

    async def apply(self) -> None:
        """Install or remove all configured packages.

        Raises:
            CommandError: If an apt command fails
        """
        if self.step.state == "absent":
            await self._remove_packages()
            return

        if self.step.update:
            await self._update_apt_cache()

        await self._install_packages()

        if self.step.hold:
            await self._hold_packages()

    async def _builtin_check(self) -> bool:
        for spec in self.packages:
            info = await self.system.package_info(spec.name)
            if self.step.state == "absent":
                if info.installed:
                    return False
            elif not info.installed or not spec.matches(info.version):
                return False

        if self.step.state == "present" and self.step.hold:
            held = await self._held_packages()
            return all(spec.name in held for spec in self.packages)
        return True

    async def _update_apt_cache(self) -> None:
        cmd = Command(executable="apt-get", args=["update"])
        await self.system.run_exclusive(cmd)

    async def _install_packages(self) -> None:
        args = ["install", "-y"]
        if self.step.hold:
            # Pinned versions may replace packages held by an earlier run
            args.append("--allow-change-held-packages")
        args.extend(spec.apt_argument for spec in self.packages)

        await self.system.run_exclusive(Command(executable="apt-get", args=args))

        logger.info(
            "Installed apt packages",
            step=self.step.id,
            packages=",".join(spec.name for spec in self.packages),
        )

    async def _remove_packages(self) -> None:
        # Only remove what is present; apt-get fails on unknown packages
        installed = [
            spec.name
            for spec in self.packages
            if (await self.system.package_info(spec.name)).installed
        ]
        if not installed:
            logger.debug("No packages to remove", step=self.step.id)
            return

        cmd = Command(executable="apt-get", args=["remove", "-y", *installed])
        await self.system.run_exclusive(cmd)

        logger.info("Removed apt packages", step=self.step.id, packages=",".join(installed))

    async def _hold_packages(self) -> None:
        names = [spec.name for spec in self.packages]
        await self.system.run_exclusive(Command(executable="apt-mark", args=["hold", *names]))
        logger.debug("Held apt packages", step=self.step.id, packages=",".join(names))

    async def _held_packages(self) -> set[str]:
        try:
            output = await self.system.run(Command(executable="apt-mark", args=["showhold"]))
        except CommandError as e:
            raise PreconditionError(f"cannot list held packages: {e}") from e
        return set(output.decode("utf-8", errors="replace").split())
