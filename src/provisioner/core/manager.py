"""Manager for orchestrating provisioning runs."""

from pathlib import Path

from provisioner.config.models import PlanConfig
from provisioner.core.executor import Executor
from provisioner.core.graph import DependencyGraph, ExecutionPlan
from provisioner.core.logging import get_logger
from provisioner.core.reporter import Reporter
from provisioner.core.state import PlanStatus, ProvisioningState, StateStore
from provisioner.core.verifier import VerificationReport, Verifier
from provisioner.system.runner import System
from provisioner.system.worker import Worker

logger = get_logger(__name__)


class Manager:
    """Manager coordinates a provisioning run.

    The Manager orders the plan, loads recorded state, hands both to the
    Executor and exposes standalone status and verification.
    """

    def __init__(
        self,
        config: PlanConfig,
        system: Worker | None = None,
        reporter: Reporter | None = None,
        store: StateStore | None = None,
        trace: bool = False,
    ) -> None:
        """Initialize the Manager.

        Args:
            config: Validated plan
            system: System worker (defaults to the local host)
            reporter: Reporter for output (defaults to rich text on stdout)
            store: State store (defaults to the plan's state file)
            trace: Print every command with its output
        """
        self.config = config
        self.system = system or System(trace=trace)
        self.reporter = reporter or Reporter()
        self.store = store or StateStore(Path(config.settings.state_file))
        self.status = PlanStatus.LOADED
        self.plan: ExecutionPlan | None = None

    def order(self) -> ExecutionPlan:
        """Resolve the execution order.

        Raises:
            ConfigError: On unknown dependencies
            CycleError: On dependency cycles
        """
        if self.plan is None:
            self.plan = DependencyGraph(self.config.steps).resolve_order()
            self.status = PlanStatus.ORDERED
            logger.debug("Resolved execution order", steps=len(self.plan))
        return self.plan

    async def apply(self, dry_run: bool = False, parallel: bool = False) -> PlanStatus:
        """Run the plan, resuming from recorded state.

        Args:
            dry_run: Report what would run without changing anything
            parallel: Allow concurrent steps with disjoint resource tags

        Returns:
            COMPLETED or HALTED

        Raises:
            ConfigError: If the plan or the state file is invalid
        """
        plan = self.order()
        state = self.store.load()

        executor = Executor(
            self.system,
            self.store,
            self.reporter,
            verifier=Verifier(self.system),
            default_timeout=self.config.settings.default_timeout,
            dry_run=dry_run,
            parallel=parallel,
        )
        self.status = PlanStatus.EXECUTING
        await executor.run(plan, state)
        self.status = executor.status

        logger.info("Plan finished", status=self.status.value, state_file=str(self.store.path))
        return self.status

    async def verify(self) -> list[VerificationReport]:
        """Run every step's verification probes without changing anything.

        Returns:
            One report per step that declares probes, in execution order
        """
        verifier = Verifier(self.system)
        reports = [await verifier.verify(step) for step in self.order() if step.verify]
        self.reporter.verification(reports)
        return reports

    def state(self) -> ProvisioningState:
        """Load the recorded state."""
        return self.store.load()

    def pending(self, state: ProvisioningState) -> list[str]:
        """Steps of the plan that have no recorded result, in execution order."""
        return [step_id for step_id in self.order().ids if step_id not in state]
