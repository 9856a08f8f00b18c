"""Built-in plan presets for provisioner.

Presets are raw plan documents, so CLI overrides and ``{{ ... }}``
references apply to them exactly as they do to plan files.
"""

import copy
from typing import Any

ADMIN_KUBECONFIG = "/etc/kubernetes/admin.conf"
KUBECTL = f"kubectl --kubeconfig {ADMIN_KUBECONFIG}"
CONTROL_PLANE_TAINT = "node-role.kubernetes.io/control-plane"

CONTAINERD_UNIT = """\
[Unit]
Description=containerd container runtime
Documentation=https://containerd.io
After=network.target local-fs.target dbus.service

[Service]
ExecStartPre=-/sbin/modprobe overlay
ExecStart=/usr/local/bin/containerd

Type=notify
Delegate=yes
KillMode=process
Restart=always
RestartSec=5

LimitNPROC=infinity
LimitCORE=infinity

TasksMax=infinity
OOMScoreAdjust=-999

[Install]
WantedBy=multi-user.target
"""

DEFAULT_COMPONENTS: dict[str, dict[str, str]] = {
    "containerd": {
        "version": "2.0.0",
        "url": (
            "https://github.com/containerd/containerd/releases/download/"
            "v{{ components.containerd.version }}/"
            "containerd-{{ components.containerd.version }}-linux-amd64.tar.gz"
        ),
    },
    "runc": {
        "version": "1.2.1",
        "url": (
            "https://github.com/opencontainers/runc/releases/download/"
            "v{{ components.runc.version }}/runc.amd64"
        ),
    },
    "cni-plugins": {
        "version": "1.6.0",
        "url": (
            "https://github.com/containernetworking/plugins/releases/download/"
            "v{{ components.cni-plugins.version }}/"
            "cni-plugins-linux-amd64-v{{ components.cni-plugins.version }}.tgz"
        ),
    },
    "kubernetes": {
        "version": "1.30",
        "url": "https://pkgs.k8s.io/core:/stable:/v{{ components.kubernetes.version }}/deb/",
    },
}

HOST_PREPARATION_STEPS: list[dict[str, Any]] = [
    {
        "id": "disable-swap",
        "kind": "shell",
        "description": "Turn swap off now and on every boot",
        "command": r"swapoff -a && sed -i '/\sswap\s/d' /etc/fstab",
        "check": r'[ -z "$(swapon --noheadings --show)" ] && ! grep -Eq "^[^#].*\sswap\s" /etc/fstab',
        "resources": ["swap"],
    },
    {
        "id": "kernel-modules-config",
        "kind": "file",
        "path": "/etc/modules-load.d/containerd.conf",
        "content": "overlay\nbr_netfilter\n",
        "resources": ["modules-config"],
    },
    {
        "id": "load-modules",
        "kind": "shell",
        "depends-on": ["kernel-modules-config"],
        "command": "modprobe overlay && modprobe br_netfilter",
        "check": "grep -q '^overlay ' /proc/modules && grep -q '^br_netfilter ' /proc/modules",
        "resources": ["kernel-modules"],
    },
    {
        "id": "sysctl-config",
        "kind": "file",
        "path": "/etc/sysctl.d/kubernetes.conf",
        "content": (
            "net.bridge.bridge-nf-call-ip6tables = 1\n"
            "net.bridge.bridge-nf-call-iptables  = 1\n"
            "net.ipv4.ip_forward                 = 1\n"
        ),
        "resources": ["sysctl-config"],
    },
    {
        "id": "apply-sysctl",
        "kind": "shell",
        "depends-on": ["sysctl-config", "load-modules"],
        "command": "sysctl --system",
        "check": (
            '[ "$(sysctl -n net.ipv4.ip_forward)" = 1 ] && '
            '[ "$(sysctl -n net.bridge.bridge-nf-call-iptables)" = 1 ]'
        ),
    },
    {
        "id": "disable-ufw",
        "kind": "shell",
        "description": "Best effort: hosts without ufw are fine",
        "command": "ufw disable",
        "check": "! command -v ufw >/dev/null || ufw status | grep -q 'Status: inactive'",
        "continue-on-error": True,
    },
    {
        "id": "remove-conflicting-packages",
        "kind": "package",
        "packages": ["containernetworking-plugins", "conmon"],
        "state": "absent",
        "continue-on-error": True,
    },
]

RUNTIME_STEPS: list[dict[str, Any]] = [
    {
        "id": "download-containerd",
        "kind": "download",
        "url": "{{ components.containerd.url }}",
        "checksum": "{{ components.containerd.checksum }}",
        "dest": "/var/cache/provisioner/containerd-{{ components.containerd.version }}.tar.gz",
        "extract-to": "/usr/local",
        "resources": ["download-containerd"],
        "verify": [{"binary": "/usr/local/bin/containerd"}],
    },
    {
        "id": "install-runc",
        "kind": "download",
        "url": "{{ components.runc.url }}",
        "checksum": "{{ components.runc.checksum }}",
        "dest": "/usr/local/sbin/runc",
        "mode": "0755",
        "resources": ["download-runc"],
        "verify": [{"binary": "/usr/local/sbin/runc"}],
    },
    {
        "id": "download-cni-plugins",
        "kind": "download",
        "url": "{{ components.cni-plugins.url }}",
        "checksum": "{{ components.cni-plugins.checksum }}",
        "dest": "/var/cache/provisioner/cni-plugins-{{ components.cni-plugins.version }}.tgz",
        "extract-to": "/opt/cni/bin",
        "resources": ["download-cni"],
        "verify": [{"binary": "/opt/cni/bin/bridge"}],
    },
    {
        "id": "containerd-unit",
        "kind": "file",
        "path": "/usr/local/lib/systemd/system/containerd.service",
        "content": CONTAINERD_UNIT,
    },
    {
        "id": "reload-units",
        "kind": "service",
        "depends-on": ["containerd-unit"],
        "action": "daemon-reload",
    },
    {
        "id": "enable-containerd",
        "kind": "service",
        "depends-on": ["download-containerd", "reload-units", "load-modules"],
        "unit": "containerd",
        "action": "enable-now",
    },
    {
        "id": "restart-containerd",
        "kind": "service",
        "depends-on": ["enable-containerd", "install-runc", "download-cni-plugins"],
        "unit": "containerd",
        "action": "restart",
        "verify": [
            {"service-active": "containerd"},
            {
                "version": {
                    "command": "/usr/local/bin/containerd --version",
                    "minimum": "{{ components.containerd.version }}",
                }
            },
        ],
    },
]

KUBERNETES_STEPS: list[dict[str, Any]] = [
    {
        "id": "kubernetes-apt-key",
        "kind": "shell",
        "command": (
            "mkdir -p /etc/apt/keyrings && "
            "curl -fsSL {{ components.kubernetes.url }}Release.key | "
            "gpg --dearmor --yes -o /etc/apt/keyrings/kubernetes-apt-keyring.gpg"
        ),
        "check": "test -s /etc/apt/keyrings/kubernetes-apt-keyring.gpg",
        "resources": ["apt-keyring"],
    },
    {
        "id": "kubernetes-apt-repo",
        "kind": "file",
        "depends-on": ["kubernetes-apt-key"],
        "path": "/etc/apt/sources.list.d/kubernetes.list",
        "content": (
            "deb [signed-by=/etc/apt/keyrings/kubernetes-apt-keyring.gpg] "
            "{{ components.kubernetes.url }} /\n"
        ),
    },
    {
        "id": "install-kubernetes",
        "kind": "package",
        "depends-on": ["kubernetes-apt-repo"],
        "packages": ["kubelet", "kubeadm", "kubectl"],
        "update": True,
        "hold": True,
        "timeout": 900,
        "verify": [
            {"binary": "kubelet"},
            {
                "version": {
                    "command": "kubeadm version -o short",
                    "minimum": "{{ components.kubernetes.version }}",
                }
            },
            {
                "version": {
                    "command": "kubectl version --client",
                    "minimum": "{{ components.kubernetes.version }}",
                }
            },
        ],
    },
    {
        "id": "enable-kubelet",
        "kind": "service",
        "depends-on": ["install-kubernetes"],
        "unit": "kubelet",
        "action": "enable",
    },
    {
        "id": "init-cluster",
        "kind": "shell",
        "depends-on": ["restart-containerd", "apply-sysctl", "disable-swap", "enable-kubelet"],
        "command": (
            "kubeadm init --pod-network-cidr={{ settings.pod-network-cidr }} "
            "--cri-socket unix:///run/containerd/containerd.sock "
            "--ignore-preflight-errors=NumCPU"
        ),
        "check": f"test -f {ADMIN_KUBECONFIG}",
        "timeout": 900,
        "verify": [
            {"service-active": "kubelet"},
            {"command": f"{KUBECTL} get --raw /readyz"},
        ],
    },
    {
        "id": "configure-kubectl",
        "kind": "shell",
        "depends-on": ["init-cluster"],
        "command": (
            'mkdir -p "$(dirname {{ settings.kubeconfig }})" && '
            f"install -m 600 {ADMIN_KUBECONFIG} {{{{ settings.kubeconfig }}}}"
        ),
        "check": f"cmp -s {ADMIN_KUBECONFIG} {{{{ settings.kubeconfig }}}}",
    },
    {
        "id": "untaint-control-plane",
        "kind": "shell",
        "depends-on": ["init-cluster"],
        "command": (
            f"if {KUBECTL} get nodes -o jsonpath='{{.items[*].spec.taints[*].key}}' "
            f"| grep -q {CONTROL_PLANE_TAINT}; then "
            f"{KUBECTL} taint nodes --all {CONTROL_PLANE_TAINT}-; fi"
        ),
        "check": (
            f"! {KUBECTL} get nodes -o jsonpath='{{.items[*].spec.taints[*].key}}' "
            f"| grep -q {CONTROL_PLANE_TAINT}"
        ),
        "verify": [{"command": f"{KUBECTL} get nodes -o wide"}],
    },
]


def _control_plane_preset() -> dict[str, Any]:
    """Preset turning a fresh host into a single-node control plane on containerd."""
    return {
        "settings": {
            "pod-network-cidr": "192.168.0.0/16",
            "kubeconfig": "/root/.kube/config",
        },
        "components": DEFAULT_COMPONENTS,
        "steps": HOST_PREPARATION_STEPS + RUNTIME_STEPS + KUBERNETES_STEPS,
    }


def _host_prep_preset() -> dict[str, Any]:
    """Preset covering only swap, kernel and firewall preparation."""
    return {
        "components": {},
        "steps": HOST_PREPARATION_STEPS,
    }


PRESETS: dict[str, dict[str, Any]] = {
    "control-plane": _control_plane_preset(),
    "host-prep": _host_prep_preset(),
}


def get_available_presets() -> list[str]:
    """Get list of available preset names.

    Returns:
        List of preset names
    """
    return list(PRESETS.keys())


def get_preset(name: str) -> dict[str, Any]:
    """Get a plan preset by name.

    Args:
        name: Preset name (control-plane, host-prep)

    Returns:
        Deep copy of the preset's raw plan document

    Raises:
        ValueError: If preset name is not recognized
    """
    if name not in PRESETS:
        raise ValueError(f"Unknown preset '{name}'. Available presets: {', '.join(PRESETS.keys())}")
    return copy.deepcopy(PRESETS[name])
