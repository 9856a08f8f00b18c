"""Verify command implementation."""

from provisioner.config.loader import load_plan
from provisioner.config.models import ConfigOverrides
from provisioner.core.logging import get_logger
from provisioner.core.manager import Manager
from provisioner.core.reporter import Reporter
from provisioner.core.verifier import Health

logger = get_logger(__name__)


async def run_verify(
    plan_file: str,
    preset: str,
    overrides: ConfigOverrides,
    json_output: bool = False,
) -> int:
    """Run every verification probe of a plan.

    Returns:
        Process exit code (0 when every report is healthy, 1 otherwise)

    Raises:
        ConfigError: If the plan is invalid
    """
    config = load_plan(plan_file=plan_file, preset=preset, overrides=overrides)
    manager = Manager(config, reporter=Reporter(json_output=json_output))

    reports = await manager.verify()
    unhealthy = [r.step_id for r in reports if r.health is not Health.HEALTHY]
    if unhealthy:
        logger.warning("Host is not in the expected state", steps=",".join(unhealthy))
        return 1

    logger.info("All probes healthy", steps=len(reports))
    return 0
