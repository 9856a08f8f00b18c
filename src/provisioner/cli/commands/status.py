"""Status and reset command implementations."""

from pathlib import Path

from provisioner.config.loader import load_plan
from provisioner.config.models import DEFAULT_STATE_FILE, ConfigOverrides
from provisioner.core.logging import get_logger
from provisioner.core.manager import Manager
from provisioner.core.reporter import Reporter
from provisioner.core.state import StateStore

logger = get_logger(__name__)


def run_status(
    plan_file: str,
    preset: str,
    overrides: ConfigOverrides,
    json_output: bool = False,
) -> None:
    """Show recorded step results.

    Without a plan only the state file is read; with one, steps that have
    never been recorded are listed as pending.
    """
    reporter = Reporter(json_output=json_output)

    if not plan_file and not preset:
        store = StateStore(Path(overrides.state_file or DEFAULT_STATE_FILE))
        logger.debug("Reading state without a plan", path=str(store.path))
        reporter.status(store.load())
        return

    config = load_plan(plan_file=plan_file, preset=preset, overrides=overrides)
    manager = Manager(config, reporter=reporter)
    state = manager.state()
    reporter.status(state, manager.pending(state))


def run_reset(state_file: str) -> Path:
    """Forget every recorded result. The host itself is left untouched."""
    store = StateStore(Path(state_file or DEFAULT_STATE_FILE))
    store.clear()
    return store.path
