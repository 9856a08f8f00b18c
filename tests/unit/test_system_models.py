"""Unit tests for system models."""

import pytest

from provisioner.system.models import PackageInfo, PackageSpec, UnitInfo


class TestPackageSpec:
    """Tests for PackageSpec dataclass."""

    def test_from_string_name_only(self) -> None:
        """Test parsing a bare package name."""
        spec = PackageSpec.from_string("kubelet")
        assert spec.name == "kubelet"
        assert spec.version == ""

    def test_from_string_with_version(self) -> None:
        """Test parsing apt's name=version form."""
        spec = PackageSpec.from_string("kubelet=1.30.2-1.1")
        assert spec.name == "kubelet"
        assert spec.version == "1.30.2-1.1"

    def test_from_string_strips_whitespace(self) -> None:
        """Test that surrounding whitespace is ignored."""
        spec = PackageSpec.from_string(" kubeadm = 1.30.* ")
        assert spec.name == "kubeadm"
        assert spec.version == "1.30.*"

    def test_apt_argument(self) -> None:
        """Test the argument passed to apt-get install."""
        assert PackageSpec("kubectl").apt_argument == "kubectl"
        assert PackageSpec("kubectl", "1.30.2-1.1").apt_argument == "kubectl=1.30.2-1.1"

    @pytest.mark.parametrize(
        ("version", "installed", "expected"),
        [
            ("", "1.30.2-1.1", True),
            ("1.30.2-1.1", "1.30.2-1.1", True),
            ("1.30.*", "1.30.5-1.1", True),
            ("1.30", "1.31.0-1.1", False),
            ("1.30.2-1.1", "1.30.1-1.1", False),
        ],
    )
    def test_matches(self, version: str, installed: str, expected: bool) -> None:
        """Test matching installed versions against a pinned version or prefix."""
        assert PackageSpec("kubelet", version).matches(installed) is expected

    def test_frozen(self) -> None:
        """Test that PackageSpec is immutable."""
        spec = PackageSpec("kubelet")
        with pytest.raises(AttributeError):
            spec.name = "kubeadm"  # type: ignore[misc]


class TestHostInfo:
    """Tests for PackageInfo and UnitInfo."""

    def test_package_info_defaults(self) -> None:
        """Test that a missing package has no version."""
        info = PackageInfo(installed=False)
        assert info.installed is False
        assert info.version == ""

    def test_unit_info(self) -> None:
        """Test creating a UnitInfo instance."""
        info = UnitInfo(active=True, enabled=False)
        assert info.active is True
        assert info.enabled is False
