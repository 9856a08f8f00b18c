"""Apply and plan command implementations."""

import os

from provisioner.config.loader import load_plan
from provisioner.config.models import ConfigOverrides
from provisioner.core.logging import get_logger
from provisioner.core.manager import Manager
from provisioner.core.reporter import Reporter
from provisioner.core.state import PlanStatus

logger = get_logger(__name__)


async def run_apply(
    plan_file: str,
    preset: str,
    overrides: ConfigOverrides,
    yes: bool = False,
    dry_run: bool = False,
    parallel: bool = False,
    json_output: bool = False,
    trace: bool = False,
) -> int:
    """Execute the apply command.

    Args:
        plan_file: Path to plan file
        preset: Preset name to use
        overrides: Overrides from CLI/env
        yes: Confirm that the host may be changed
        dry_run: Only report what would run
        parallel: Allow concurrent steps with disjoint resource tags
        json_output: Emit JSON lines instead of rich text
        trace: Print every command with its output

    Returns:
        Process exit code (0 completed, 1 halted)

    Raises:
        ConfigError: If the plan is invalid
    """
    config = load_plan(plan_file=plan_file, preset=preset, overrides=overrides)
    logger.info(
        "Plan loaded",
        steps=len(config.steps),
        components=",".join(f"{n}={c.version}" for n, c in config.components.items()) or "-",
    )

    if not yes and not dry_run:
        logger.warning("Nothing will be changed without --yes; showing what would run")
        dry_run = True

    if not dry_run and os.geteuid() != 0:
        logger.warning("Not running as root; most steps need root privileges")

    manager = Manager(config, reporter=Reporter(json_output=json_output), trace=trace)
    status = await manager.apply(dry_run=dry_run, parallel=parallel)

    return 0 if status is PlanStatus.COMPLETED else 1


def run_plan(plan_file: str, preset: str, overrides: ConfigOverrides) -> list[str]:
    """Resolve and return the execution order of a plan.

    Raises:
        ConfigError: If the plan is invalid or cyclic
    """
    config = load_plan(plan_file=plan_file, preset=preset, overrides=overrides)
    return Manager(config).order().ids
