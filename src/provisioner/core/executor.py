"""Executor running an ordered plan against the host."""

import asyncio
import time
from collections.abc import Callable

from provisioner.config.models import DEFAULT_TIMEOUT, StepBase
from provisioner.core.errors import (
    ExecutionError,
    PreconditionError,
    ProvisionError,
    VerificationError,
)
from provisioner.core.graph import ExecutionPlan
from provisioner.core.logging import get_logger
from provisioner.core.reporter import Reporter, StepEvent
from provisioner.core.state import (
    Outcome,
    PlanStatus,
    ProvisioningState,
    StateStore,
    StepResult,
    StepStatus,
)
from provisioner.core.verifier import Health, Verifier
from provisioner.steps.base import Action
from provisioner.steps.factory import create_action
from provisioner.system.command import CommandError
from provisioner.system.worker import Worker

logger = get_logger(__name__)

OUTPUT_TAIL_LINES = 5

ActionFactory = Callable[[StepBase, Worker], Action]


def _tail(output: str, lines: int = OUTPUT_TAIL_LINES) -> str:
    return "\n".join(output.strip().splitlines()[-lines:])


class Executor:
    """Runs steps in plan order, skipping work that is already done.

    For each step: a step recorded as succeeded whose idempotency check
    still holds is skipped; otherwise its action runs within the step
    timeout, after which the idempotency check and the verification probes
    must pass. A failure halts the rest of the plan unless the step is
    marked ``continue-on-error``. Dependents of a failed step never run.
    Every attempted step is appended to the state store; steps that never
    ran are reported but not recorded.
    """

    def __init__(
        self,
        system: Worker,
        store: StateStore,
        reporter: Reporter,
        verifier: Verifier | None = None,
        default_timeout: float = DEFAULT_TIMEOUT,
        dry_run: bool = False,
        parallel: bool = False,
        action_factory: ActionFactory = create_action,
    ) -> None:
        """Initialize the Executor.

        Args:
            system: System worker the actions act through
            store: Durable store results are appended to
            reporter: Receives one event per step
            verifier: Runs the steps' verification probes after execution
            default_timeout: Seconds a step may run when it sets no timeout
            dry_run: Report what would run without touching host or store
            parallel: Run adjacent steps with disjoint resource tags concurrently
            action_factory: Builds the action for a step
        """
        self.system = system
        self.store = store
        self.reporter = reporter
        self.verifier = verifier or Verifier(system)
        self.default_timeout = default_timeout
        self.dry_run = dry_run
        self.parallel = parallel
        self._action_factory = action_factory
        self.status = PlanStatus.ORDERED

    async def run(self, plan: ExecutionPlan, state: ProvisioningState) -> ProvisioningState:
        """Execute a plan.

        Args:
            plan: Steps in dependency order
            state: Results recorded by earlier runs; updated in place

        Returns:
            The updated state
        """
        self.status = PlanStatus.EXECUTING
        self.reporter.plan_started(plan, dry_run=self.dry_run)

        steps = list(plan)
        failed: set[str] = set()
        not_run: set[str] = set()
        halted_by: str | None = None
        index = 0

        while index < len(steps):
            if halted_by is not None:
                for step in steps[index:]:
                    self._report_not_run(step, f"plan halted after '{halted_by}' failed")
                    not_run.add(step.id)
                break

            step = steps[index]
            blocker = next((d for d in step.depends_on if d in failed or d in not_run), None)
            if blocker is not None:
                self._report_not_run(step, f"dependency '{blocker}' did not succeed")
                not_run.add(step.id)
                index += 1
                continue

            batch = self._next_batch(steps, index, failed | not_run)
            outcomes = await asyncio.gather(*(self._execute(s, state) for s in batch))

            for batch_step, (event, result) in zip(batch, outcomes, strict=True):
                if result is not None:
                    self._record(result, state)
                self.reporter.step_finished(event)

                if event.status is StepStatus.FAILED:
                    failed.add(batch_step.id)
                    if batch_step.continue_on_error:
                        logger.warning("Tolerated step failure", step=batch_step.id)
                    elif halted_by is None:
                        halted_by = batch_step.id
            index += len(batch)

        self.status = PlanStatus.HALTED if halted_by or not_run else PlanStatus.COMPLETED
        self.reporter.plan_finished(self.status)
        logger.debug("Plan finished", status=self.status.value)
        return state

    def _next_batch(self, steps: list[StepBase], start: int, unusable: set[str]) -> list[StepBase]:
        """Collect the steps that may run together starting at ``start``.

        Only consecutive steps that all carry resource tags, share none of
        them and do not depend on each other are grouped.
        """
        first = steps[start]
        if not self.parallel or not first.resources:
            return [first]

        batch = [first]
        claimed = set(first.resources)
        for candidate in steps[start + 1 :]:
            if not candidate.resources or claimed.intersection(candidate.resources):
                break
            if any(dep in unusable or dep in {s.id for s in batch} for dep in candidate.depends_on):
                break
            batch.append(candidate)
            claimed.update(candidate.resources)
        return batch

    async def _execute(
        self, step: StepBase, state: ProvisioningState
    ) -> tuple[StepEvent, StepResult | None]:
        action = self._action_factory(step, self.system)
        started = time.monotonic()

        if state.completed(step.id):
            try:
                satisfied = await action.satisfied()
            except PreconditionError as e:
                logger.warning("Idempotency check unavailable", step=step.id, error=str(e))
                return self._result(
                    step,
                    Outcome.SKIPPED,
                    started,
                    f"idempotency check unavailable, keeping earlier success: {e}",
                    PreconditionError.category,
                )
            if satisfied is not False:
                return self._result(step, Outcome.SKIPPED, started, "already satisfied")
            logger.info("Step no longer satisfied, running again", step=step.id)

        if self.dry_run:
            return StepEvent(step.id, StepStatus.PENDING, diagnostic="would run"), None

        logger.info("Running step", step=step.id, kind=step.step_kind.value)
        try:
            await self._apply(action, step)
            await self._check_postconditions(action, step)
        except (ExecutionError, VerificationError) as e:
            logger.error("Step failed", step=step.id, error=e.category)
            return self._result(step, Outcome.FAILED, started, str(e), e.category)
        except asyncio.CancelledError:
            event, result = self._result(
                step, Outcome.FAILED, started, "interrupted", ExecutionError.category
            )
            self._record(result, state)
            self.reporter.step_finished(event)
            raise

        return self._result(step, Outcome.SUCCEEDED, started)

    async def _apply(self, action: Action, step: StepBase) -> None:
        timeout = step.timeout or self.default_timeout
        try:
            await asyncio.wait_for(action.apply(), timeout=timeout)
        except TimeoutError as e:
            raise ExecutionError(f"timed out after {timeout:g}s") from e
        except CommandError as e:
            raise ExecutionError(f"{e}\n{_tail(e.output)}".strip(), output=e.output) from e
        except OSError as e:
            raise ExecutionError(f"{type(e).__name__}: {e}") from e
        except ExecutionError:
            raise
        except ProvisionError as e:
            # e.g. the package database could not be queried mid-action
            raise ExecutionError(str(e)) from e

    async def _check_postconditions(self, action: Action, step: StepBase) -> None:
        try:
            satisfied = await action.satisfied()
        except PreconditionError as e:
            raise VerificationError(f"postcondition could not be evaluated: {e}") from e
        if satisfied is False:
            raise VerificationError("postcondition not met")

        if not step.verify:
            return
        report = await self.verifier.verify(step)
        if report.health is Health.UNHEALTHY:
            raise VerificationError(f"verification failed: {report.describe()}")
        if report.health is Health.UNKNOWN:
            logger.warning("Verification inconclusive", step=step.id, detail=report.describe())

    def _result(
        self,
        step: StepBase,
        outcome: Outcome,
        started: float,
        diagnostic: str = "",
        error: str = "",
    ) -> tuple[StepEvent, StepResult]:
        duration = time.monotonic() - started
        result = StepResult(
            step_id=step.id,
            outcome=outcome,
            duration=duration,
            diagnostic=diagnostic,
            error=error,
        )
        event = StepEvent(
            step_id=step.id,
            status=StepStatus(outcome.value),
            duration=duration,
            diagnostic=diagnostic,
            error=error,
        )
        return event, result

    def _record(self, result: StepResult, state: ProvisioningState) -> None:
        if self.dry_run:
            return
        self.store.append(result)
        state.record(result)

    def _report_not_run(self, step: StepBase, reason: str) -> None:
        logger.debug("Step not run", step=step.id, reason=reason)
        self.reporter.step_finished(
            StepEvent(step.id, StepStatus.SKIPPED, diagnostic=f"not run: {reason}")
        )
