"""Data models for host operations.

This module provides dataclasses describing packages and systemd units as
reported by the host's package and service managers.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class PackageSpec:
    """A Debian package requested by name, optionally pinned to a version.

    Attributes:
        name: Package name
        version: Version or version prefix (empty means any)
    """

    name: str
    version: str = ""

    @staticmethod
    def from_string(package_str: str) -> "PackageSpec":
        """Parse a package from apt's shorthand form (e.g. 'kubelet=1.30.2-1.1').

        Args:
            package_str: Package string in format 'name' or 'name=version'

        Returns:
            PackageSpec instance
        """
        name, _, version = package_str.partition("=")
        return PackageSpec(name=name.strip(), version=version.strip())

    @property
    def apt_argument(self) -> str:
        """Argument to pass to apt-get install."""
        if self.version:
            return f"{self.name}={self.version}"
        return self.name

    def matches(self, installed_version: str) -> bool:
        """Check whether an installed version satisfies this spec."""
        if not self.version:
            return True
        return installed_version.startswith(self.version.rstrip("*"))


@dataclass(frozen=True)
class PackageInfo:
    """Installation state of a package as reported by dpkg.

    Attributes:
        installed: Whether the package is currently installed
        version: Installed version (empty if not installed)
    """

    installed: bool
    version: str = ""


@dataclass(frozen=True)
class UnitInfo:
    """State of a systemd unit.

    Attributes:
        active: Whether the unit is currently active
        enabled: Whether the unit is enabled to start at boot
    """

    active: bool
    enabled: bool
