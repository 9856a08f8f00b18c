"""Durable record of step results."""

import os
import re
from collections.abc import Iterator, Mapping
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError

from provisioner.core.errors import ConfigError
from provisioner.core.logging import get_logger

logger = get_logger(__name__)

# Document start and end markers, each on a line of its own
DOCUMENT_START = re.compile(r"^---[ \t]*$", re.MULTILINE)
DOCUMENT_END = re.compile(r"^\.\.\.[ \t]*$", re.MULTILINE)


class Outcome(str, Enum):
    """Terminal outcome of a step."""

    SUCCEEDED = "succeeded"
    SKIPPED = "skipped"
    FAILED = "failed"


class StepStatus(str, Enum):
    """Lifecycle of a step within one run."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    SKIPPED = "skipped"
    FAILED = "failed"


class PlanStatus(str, Enum):
    """Lifecycle of a plan within one run."""

    LOADED = "loaded"
    ORDERED = "ordered"
    EXECUTING = "executing"
    COMPLETED = "completed"
    HALTED = "halted"


class StepResult(BaseModel):
    """Result of one attempt at a step. Never modified once created."""

    model_config = {"frozen": True}

    step_id: str
    outcome: Outcome
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    duration: float = 0.0
    diagnostic: str = ""
    error: str = ""


class ProvisioningState:
    """Latest recorded result for each step id.

    Entries are only ever added or superseded by a newer result for the same
    step; nothing is removed.
    """

    def __init__(self, results: Mapping[str, StepResult] | None = None) -> None:
        self._results: dict[str, StepResult] = dict(results or {})

    def get(self, step_id: str) -> StepResult | None:
        return self._results.get(step_id)

    def record(self, result: StepResult) -> None:
        self._results[result.step_id] = result

    def completed(self, step_id: str) -> bool:
        """True if the step succeeded, possibly followed by runs that skipped it.

        A skip is only ever recorded on top of an earlier success, so both
        outcomes mean the step's end state was reached.
        """
        result = self._results.get(step_id)
        return result is not None and result.outcome in (Outcome.SUCCEEDED, Outcome.SKIPPED)

    def __contains__(self, step_id: object) -> bool:
        return step_id in self._results

    def __len__(self) -> int:
        return len(self._results)

    def __iter__(self) -> Iterator[StepResult]:
        return iter(self._results.values())


class StateStore:
    """Append-only YAML stream of step results.

    Each result is written as its own YAML document and synced to disk
    before ``append`` returns, so a crash never loses a recorded step. When
    loading, later documents for a step supersede earlier ones.
    """

    def __init__(self, path: Path) -> None:
        """Initialize the store.

        Args:
            path: Location of the state file
        """
        self.path = path

    def load(self) -> ProvisioningState:
        """Load the recorded state.

        Every complete entry ends with a YAML document end marker. An entry
        without one was cut short by an interrupted ``append``; if it does
        not parse it is logged and dropped rather than failing the load.

        Returns:
            ProvisioningState (empty if nothing has been recorded yet)

        Raises:
            ConfigError: If a complete entry in the state file cannot be parsed
        """
        state = ProvisioningState()
        if not self.path.exists():
            logger.debug("No state file, starting fresh", path=str(self.path))
            return state

        for chunk in DOCUMENT_START.split(self.path.read_text()):
            if not chunk.strip():
                continue
            try:
                state.record(StepResult.model_validate(yaml.safe_load(chunk)))
            except (yaml.YAMLError, ValidationError) as e:
                if DOCUMENT_END.search(chunk):
                    raise ConfigError(f"State file {self.path} is corrupt: {e}") from e
                logger.warning(
                    "Dropping incomplete state entry", path=str(self.path), error=str(e)
                )

        logger.debug("Loaded state", path=str(self.path), steps=len(state))
        return state

    def append(self, result: StepResult) -> None:
        """Durably append a result.

        Raises:
            OSError: If the state file cannot be written
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        document = yaml.safe_dump(
            result.model_dump(mode="json"), default_flow_style=False, explicit_end=True
        )

        with self.path.open("ab") as f:
            # A cut-short entry may lack its final newline
            prefix = b"\n---\n" if f.tell() and not self._ends_with_newline() else b"---\n"
            f.write(prefix + document.encode("utf-8"))
            f.flush()
            os.fsync(f.fileno())

        logger.debug("Recorded step result", step=result.step_id, outcome=result.outcome.value)

    def _ends_with_newline(self) -> bool:
        with self.path.open("rb") as f:
            f.seek(-1, os.SEEK_END)
            return f.read(1) == b"\n"

    def clear(self) -> None:
        """Forget every recorded result."""
        self.path.unlink(missing_ok=True)
        logger.info("Cleared state", path=str(self.path))
