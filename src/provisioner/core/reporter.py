"""Structured progress and failure output."""

import json
import sys
from collections.abc import Iterable
from dataclasses import asdict, dataclass
from typing import Any, TextIO

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from provisioner.core.graph import ExecutionPlan
from provisioner.core.logging import get_logger
from provisioner.core.state import PlanStatus, ProvisioningState, StepStatus
from provisioner.core.verifier import Health, VerificationReport

logger = get_logger(__name__)

STATUS_STYLES = {
    StepStatus.PENDING: "cyan",
    StepStatus.RUNNING: "blue",
    StepStatus.SUCCEEDED: "green",
    StepStatus.SKIPPED: "yellow",
    StepStatus.FAILED: "bold red",
}

HEALTH_STYLES = {
    Health.HEALTHY: "green",
    Health.UNHEALTHY: "bold red",
    Health.UNKNOWN: "yellow",
}


@dataclass(frozen=True)
class StepEvent:
    """What happened to one step during a run."""

    step_id: str
    status: StepStatus
    duration: float = 0.0
    diagnostic: str = ""
    error: str = ""

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data["duration"] = round(self.duration, 3)
        return data


class Reporter:
    """Emits one event per step and a summary per plan.

    Output goes to stdout either as rich text or as JSON lines. The reporter
    only observes: a failure while writing output is logged and never
    propagates into the run.
    """

    def __init__(self, json_output: bool = False, stream: TextIO | None = None) -> None:
        """Initialize the Reporter.

        Args:
            json_output: Emit one JSON object per line instead of rich text
            stream: Output stream (defaults to stdout)
        """
        self.json_output = json_output
        self._stream = stream or sys.stdout
        self.console = Console(file=self._stream, highlight=False)
        self.events: list[StepEvent] = []

    def plan_started(self, plan: ExecutionPlan, dry_run: bool = False) -> None:
        self._guard(self._plan_started, plan, dry_run)

    def step_finished(self, event: StepEvent) -> None:
        self.events.append(event)
        self._guard(self._step_finished, event)

    def plan_finished(self, status: PlanStatus) -> None:
        self._guard(self._plan_finished, status)

    def verification(self, reports: Iterable[VerificationReport]) -> None:
        self._guard(self._verification, list(reports))

    def status(self, state: ProvisioningState, pending: Iterable[str] = ()) -> None:
        self._guard(self._status, state, list(pending))

    def _guard(self, emit: Any, *args: Any) -> None:
        try:
            emit(*args)
        except Exception:
            logger.exception("Failed to write report output")

    def _write_json(self, data: dict[str, Any]) -> None:
        self._stream.write(json.dumps(data, sort_keys=True) + "\n")
        self._stream.flush()

    def _plan_started(self, plan: ExecutionPlan, dry_run: bool) -> None:
        if self.json_output:
            self._write_json({"event": "plan", "steps": plan.ids, "dry_run": dry_run})
            return
        mode = " (dry run)" if dry_run else ""
        self.console.print(f"[bold]Executing plan of {len(plan)} steps{mode}[/bold]")

    def _step_finished(self, event: StepEvent) -> None:
        if self.json_output:
            self._write_json({"event": "step", **event.to_dict()})
            return

        style = STATUS_STYLES[event.status]
        line = (
            f"[{style}]{event.status.value:>9}[/{style}]  {escape(event.step_id)}"
            f" [dim]({event.duration:.1f}s)[/dim]"
        )
        if event.diagnostic:
            category = f"{event.error} error: " if event.error else ""
            line += f"\n           [dim]{escape(category + event.diagnostic)}[/dim]"
        self.console.print(line)

    def _plan_finished(self, status: PlanStatus) -> None:
        counts = {s.value: 0 for s in StepStatus}
        for event in self.events:
            counts[event.status.value] += 1

        if self.json_output:
            self._write_json({"event": "summary", "status": status.value, "counts": counts})
            return

        style = "green" if status is PlanStatus.COMPLETED else "bold red"
        summary = ", ".join(f"{n} {name}" for name, n in counts.items() if n)
        self.console.print(f"[{style}]Plan {status.value}[/{style}]: {summary or 'no steps'}")

    def _verification(self, reports: list[VerificationReport]) -> None:
        if self.json_output:
            for report in reports:
                self._write_json(
                    {
                        "event": "verify",
                        "step_id": report.step_id,
                        "health": report.health.value,
                        "probes": [
                            {"name": p.name, "health": p.health.value, "detail": p.detail}
                            for p in report.probes
                        ],
                    }
                )
            return

        table = Table(title="Verification")
        table.add_column("Step")
        table.add_column("Health")
        table.add_column("Details")
        for report in reports:
            style = HEALTH_STYLES[report.health]
            details = "\n".join(f"{p.name}: {p.detail}" for p in report.probes) or "no probes"
            table.add_row(report.step_id, f"[{style}]{report.health.value}[/{style}]", escape(details))
        self.console.print(table)

    def _status(self, state: ProvisioningState, pending: list[str]) -> None:
        if self.json_output:
            for result in state:
                self._write_json({"event": "status", **result.model_dump(mode="json")})
            for step_id in pending:
                self._write_json({"event": "status", "step_id": step_id, "outcome": "pending"})
            return

        table = Table(title="Provisioning state")
        table.add_column("Step")
        table.add_column("Outcome")
        table.add_column("Recorded")
        table.add_column("Diagnostic")
        for result in state:
            style = STATUS_STYLES[StepStatus(result.outcome.value)]
            table.add_row(
                result.step_id,
                f"[{style}]{result.outcome.value}[/{style}]",
                result.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
                escape(result.diagnostic),
            )
        for step_id in pending:
            table.add_row(step_id, "[cyan]pending[/cyan]", "", "")
        self.console.print(table)
