"""Plan models for provisioner using Pydantic."""

import re
from enum import Enum
from typing import Annotated, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

CHECKSUM_PATTERN = re.compile(r"^sha256:[0-9a-f]{64}$")
STEP_ID_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9_.-]*$"
MODE_PATTERN = r"^0?[0-7]{3,4}$"

DEFAULT_STATE_FILE = "/var/lib/provisioner/state.yaml"
DEFAULT_TIMEOUT = 600.0


class StepKind(str, Enum):
    """Kind of work a step performs."""

    SHELL = "shell"
    FILE = "file"
    PACKAGE = "package"
    SERVICE = "service"
    DOWNLOAD = "download"


def _validate_checksum(value: str) -> str:
    value = value.strip().lower()
    if value and not CHECKSUM_PATTERN.match(value):
        raise ValueError("checksum must look like 'sha256:<64 hex digits>'")
    return value


class BinaryProbe(BaseModel):
    """Healthy when an executable is found on PATH (or at an absolute path)."""

    model_config = {"frozen": True, "extra": "forbid"}

    binary: str = Field(min_length=1)


class ServiceActiveProbe(BaseModel):
    """Healthy when a systemd unit is active."""

    model_config = {"frozen": True, "extra": "forbid", "populate_by_name": True}

    service_active: str = Field(min_length=1, alias="service-active")


class VersionRequirement(BaseModel):
    """Command whose output must report at least a minimum version."""

    model_config = {"frozen": True, "extra": "forbid"}

    command: str = Field(min_length=1)
    minimum: str = Field(pattern=r"^v?\d+(\.\d+)*$")


class VersionProbe(BaseModel):
    """Healthy when a command reports a version at or above a minimum."""

    model_config = {"frozen": True, "extra": "forbid"}

    version: VersionRequirement


class CommandProbe(BaseModel):
    """Healthy when a shell command exits zero."""

    model_config = {"frozen": True, "extra": "forbid"}

    command: str = Field(min_length=1)


Probe = BinaryProbe | ServiceActiveProbe | VersionProbe | CommandProbe


class StepBase(BaseModel):
    """Fields shared by every step kind."""

    model_config = {"frozen": True, "extra": "forbid", "populate_by_name": True}

    id: str = Field(pattern=STEP_ID_PATTERN)
    description: str = ""
    depends_on: tuple[str, ...] = Field(default=(), alias="depends-on")
    check: str = ""
    continue_on_error: bool = Field(False, alias="continue-on-error")
    timeout: float | None = Field(None, gt=0)
    resources: tuple[str, ...] = ()
    verify: tuple[Probe, ...] = ()

    @property
    def step_kind(self) -> StepKind:
        """The step's kind as an enum member."""
        return StepKind(self.kind)  # type: ignore[attr-defined]


class ShellStep(StepBase):
    """Runs a shell script."""

    kind: Literal["shell"]
    command: str = Field(min_length=1)
    user: str = ""


class FileStep(StepBase):
    """Writes a file with exact content, replacing whatever was there."""

    kind: Literal["file"]
    path: str
    content: str
    mode: str | None = Field(None, pattern=MODE_PATTERN)

    @field_validator("path")
    @classmethod
    def _absolute_path(cls, value: str) -> str:
        if not value.startswith("/"):
            raise ValueError("path must be absolute")
        return value

    @property
    def mode_bits(self) -> int | None:
        """Permission bits parsed from the octal mode string."""
        return int(self.mode, 8) if self.mode else None


class PackageStep(StepBase):
    """Installs or removes Debian packages via apt."""

    kind: Literal["package"]
    packages: tuple[str, ...] = Field(min_length=1)
    state: Literal["present", "absent"] = "present"
    update: bool = False
    hold: bool = False


class ServiceStep(StepBase):
    """Drives a systemd unit."""

    kind: Literal["service"]
    unit: str = ""
    action: Literal[
        "start", "stop", "restart", "enable", "disable", "enable-now", "daemon-reload"
    ]

    @model_validator(mode="after")
    def _unit_required(self) -> "ServiceStep":
        if self.action != "daemon-reload" and not self.unit:
            raise ValueError(f"service action '{self.action}' requires a unit")
        return self


class DownloadStep(StepBase):
    """Fetches an artifact, checks its digest and optionally unpacks it."""

    kind: Literal["download"]
    url: str = Field(pattern=r"^https?://")
    dest: str
    checksum: str = ""
    mode: str | None = Field(None, pattern=MODE_PATTERN)
    extract_to: str = Field("", alias="extract-to")
    retries: int = Field(0, ge=0)

    @field_validator("checksum")
    @classmethod
    def _checksum_format(cls, value: str) -> str:
        return _validate_checksum(value)

    @field_validator("dest")
    @classmethod
    def _absolute_dest(cls, value: str) -> str:
        if not value.startswith("/"):
            raise ValueError("dest must be absolute")
        return value

    @property
    def mode_bits(self) -> int | None:
        """Permission bits parsed from the octal mode string."""
        return int(self.mode, 8) if self.mode else None


StepDescriptor = Annotated[
    ShellStep | FileStep | PackageStep | ServiceStep | DownloadStep,
    Field(discriminator="kind"),
]


class Component(BaseModel):
    """A versioned component whose literals are referenced from steps."""

    model_config = {"extra": "allow"}

    version: str = Field(min_length=1)
    url: str = ""
    checksum: str = ""

    @field_validator("checksum")
    @classmethod
    def _checksum_format(cls, value: str) -> str:
        return _validate_checksum(value)


class Settings(BaseModel):
    """Target-specific settings for a plan."""

    model_config = {"extra": "allow", "populate_by_name": True}

    state_file: str = Field(DEFAULT_STATE_FILE, alias="state-file")
    default_timeout: float = Field(DEFAULT_TIMEOUT, gt=0, alias="default-timeout")
    pod_network_cidr: str = Field("192.168.0.0/16", alias="pod-network-cidr")


class ConfigOverrides(BaseModel):
    """CLI flag and environment variable overrides for a plan."""

    state_file: str = ""
    default_timeout: float | None = None
    values: list[str] = Field(default_factory=list)


class PlanConfig(BaseModel):
    """A complete provisioning plan."""

    model_config = {"frozen": True}

    settings: Settings = Field(default_factory=Settings)
    components: dict[str, Component] = Field(default_factory=dict)
    steps: tuple[StepDescriptor, ...] = ()

    @model_validator(mode="after")
    def _unique_ids(self) -> "PlanConfig":
        seen: set[str] = set()
        for step in self.steps:
            if step.id in seen:
                raise ValueError(f"duplicate step id '{step.id}'")
            seen.add(step.id)
        return self

    def step(self, step_id: str) -> StepBase:
        """Look up a step by id.

        Raises:
            KeyError: If no step has that id
        """
        for step in self.steps:
            if step.id == step_id:
                return step
        raise KeyError(step_id)
