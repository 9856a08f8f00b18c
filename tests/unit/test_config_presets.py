"""Unit tests for plan presets."""

import io
from pathlib import Path

import pytest
from conftest import FakeSystem

from provisioner.config.loader import load_plan, render_templates
from provisioner.config.models import ConfigOverrides, PlanConfig, ServiceStep
from provisioner.config.presets import (
    DEFAULT_COMPONENTS,
    PRESETS,
    get_available_presets,
    get_preset,
)
from provisioner.core.executor import Executor
from provisioner.core.graph import DependencyGraph
from provisioner.core.reporter import Reporter
from provisioner.core.state import ProvisioningState, StateStore, StepStatus


class TestGetPreset:
    """Tests for preset lookup."""

    def test_available_presets(self) -> None:
        """Test that both presets are listed."""
        assert get_available_presets() == ["control-plane", "host-prep"]

    def test_unknown_preset(self) -> None:
        """Test that unknown presets raise ValueError."""
        with pytest.raises(ValueError, match="Unknown preset 'dev'"):
            get_preset("dev")

    def test_preset_is_a_copy(self) -> None:
        """Test that callers cannot modify the built-in presets."""
        preset = get_preset("control-plane")
        preset["components"]["containerd"]["version"] = "0.0.1"
        preset["steps"].clear()

        assert PRESETS["control-plane"]["components"]["containerd"]["version"] == "2.0.0"
        assert PRESETS["control-plane"]["steps"]


@pytest.mark.parametrize("name", ["control-plane", "host-prep"])
class TestPresetPlans:
    """Every preset must load and order cleanly."""

    def test_preset_validates(self, name: str) -> None:
        """Test that the rendered preset is a valid plan."""
        config = PlanConfig.model_validate(render_templates(get_preset(name)))
        assert config.steps

    def test_preset_orders_without_cycle(self, name: str) -> None:
        """Test that the preset resolves to an order covering every step."""
        config = load_plan(preset=name)
        order = DependencyGraph(config.steps).resolve_order()
        assert sorted(order.ids) == sorted(step.id for step in config.steps)


class TestControlPlanePreset:
    """Tests for the control-plane preset contents."""

    def test_order(self) -> None:
        """Test that host preparation precedes runtime and cluster setup."""
        order = DependencyGraph(load_plan(preset="control-plane").steps).resolve_order().ids
        assert order.index("load-modules") < order.index("apply-sysctl")
        assert order.index("download-containerd") < order.index("enable-containerd")
        assert order.index("restart-containerd") < order.index("init-cluster")
        assert order.index("install-kubernetes") < order.index("init-cluster")
        assert order[-2:] == ["configure-kubectl", "untaint-control-plane"]

    def test_versions_rendered(self) -> None:
        """Test that component versions flow into URLs and probes."""
        config = load_plan(preset="control-plane")
        download = config.step("download-containerd")
        assert download.url == (
            "https://github.com/containerd/containerd/releases/download/"
            "v2.0.0/containerd-2.0.0-linux-amd64.tar.gz"
        )
        assert download.checksum == ""
        restart = config.step("restart-containerd")
        assert isinstance(restart, ServiceStep)
        assert restart.verify[1].version.minimum == "2.0.0"

    def test_version_override(self) -> None:
        """Test that overriding a component version updates every use."""
        config = load_plan(
            preset="control-plane",
            overrides=ConfigOverrides(
                values=[
                    "components.kubernetes.version=1.31",
                    "settings.pod-network-cidr=10.244.0.0/16",
                ]
            ),
        )
        repo = config.step("kubernetes-apt-repo")
        assert "https://pkgs.k8s.io/core:/stable:/v1.31/deb/" in repo.content
        assert "--pod-network-cidr=10.244.0.0/16" in config.step("init-cluster").command

    def test_best_effort_steps(self) -> None:
        """Test that firewall and package cleanup tolerate failure."""
        config = load_plan(preset="control-plane")
        assert config.step("disable-ufw").continue_on_error is True
        assert config.step("remove-conflicting-packages").continue_on_error is True
        assert config.step("init-cluster").continue_on_error is False

    def test_kubernetes_packages_held(self) -> None:
        """Test that Kubernetes packages are installed and held."""
        step = load_plan(preset="control-plane").step("install-kubernetes")
        assert step.packages == ("kubelet", "kubeadm", "kubectl")
        assert step.hold is True
        assert step.update is True

    def test_default_components(self) -> None:
        """Test the externalized component versions."""
        assert {name: c["version"] for name, c in DEFAULT_COMPONENTS.items()} == {
            "containerd": "2.0.0",
            "runc": "1.2.1",
            "cni-plugins": "1.6.0",
            "kubernetes": "1.30",
        }

    def test_untaint_jsonpath_survives_rendering(self) -> None:
        """Test that single-brace jsonpath expressions are not treated as references."""
        step = load_plan(preset="control-plane").step("untaint-control-plane")
        assert "{.items[*].spec.taints[*].key}" in step.command

    @pytest.mark.asyncio
    async def test_failed_package_removal_does_not_block_runtime(
        self, system: FakeSystem, state_path: Path
    ) -> None:
        """Test that a tolerated removal failure still lets the downloads run."""
        system.packages["conmon"] = "2.1.10"
        system.fail("apt-get remove", returncode=100, output="E: dpkg was interrupted")
        for binary in ("/usr/local/bin/containerd", "/usr/local/sbin/runc", "/opt/cni/bin/bridge"):
            system.executables[binary] = binary
        config = load_plan(preset="control-plane")
        reporter = Reporter(stream=io.StringIO())

        await Executor(system, StateStore(state_path), reporter).run(
            DependencyGraph(config.steps).resolve_order(), ProvisioningState()
        )

        events = {event.step_id: event for event in reporter.events}
        assert events["remove-conflicting-packages"].status is StepStatus.FAILED
        for step_id in ("download-containerd", "install-runc", "download-cni-plugins"):
            assert events[step_id].status is StepStatus.SUCCEEDED
