"""Factory for creating step actions."""

from provisioner.config.models import StepBase, StepKind
from provisioner.steps.base import Action
from provisioner.steps.downloads import DownloadAction
from provisioner.steps.files import FileAction
from provisioner.steps.packages import PackageAction
from provisioner.steps.services import ServiceAction
from provisioner.steps.shell import ShellAction
from provisioner.system.worker import Worker

ACTIONS = {
    StepKind.SHELL: ShellAction,
    StepKind.FILE: FileAction,
    StepKind.PACKAGE: PackageAction,
    StepKind.SERVICE: ServiceAction,
    StepKind.DOWNLOAD: DownloadAction,
}


def create_action(step: StepBase, system: Worker) -> Action:
    """Create the action that carries out a step.

    Args:
        step: Step to carry out
        system: System worker

    Returns:
        Action instance for the step's kind
    """
    return ACTIONS[step.step_kind](step, system)
