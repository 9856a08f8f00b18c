"""Action protocol for step kinds.

Every step kind is carried out by an Action: ``apply`` changes the host and
``satisfied`` answers whether the step's end state already holds.
"""

from abc import ABC, abstractmethod
from typing import Protocol, runtime_checkable

from provisioner.config.models import StepBase
from provisioner.core.errors import PreconditionError
from provisioner.system.command import Command, CommandError
from provisioner.system.worker import Worker

# Shell exit codes for "not executable" and "command not found"
SHELL_CANNOT_RUN = (126, 127)


@runtime_checkable
class Action(Protocol):
    """Protocol for components that carry out a single step."""

    step: StepBase

    async def apply(self) -> None:
        """Bring the host to the step's end state.

        Raises:
            CommandError: If an underlying command fails
            ExecutionError: If the step fails for another reason
        """
        ...

    async def satisfied(self) -> bool | None:
        """Report whether the step's end state already holds.

        Returns:
            True or False, or None if the step has no way to tell

        Raises:
            PreconditionError: If the check cannot be evaluated
        """
        ...


class BaseAction(ABC):
    """Shared behaviour: an explicit ``check`` script overrides the built-in one."""

    def __init__(self, step: StepBase, system: Worker) -> None:
        self.step = step
        self.system = system

    @abstractmethod
    async def apply(self) -> None:
        """Bring the host to the step's end state."""

    async def satisfied(self) -> bool | None:
        """Report whether the step's end state already holds.

        Raises:
            PreconditionError: If the host cannot be queried
        """
        if self.step.check:
            return await run_check(self.system, self.step.check)
        try:
            return await self._builtin_check()
        except CommandError as e:
            raise PreconditionError(f"state query failed: {e}") from e
        except OSError as e:
            raise PreconditionError(f"state query failed: {type(e).__name__}: {e}") from e

    async def _builtin_check(self) -> bool | None:
        return None


async def run_check(system: Worker, script: str) -> bool:
    """Run a shell predicate; exit status zero means satisfied.

    Raises:
        PreconditionError: If the shell could not run the predicate at all
    """
    try:
        await system.run(Command.shell(script))
    except CommandError as e:
        if e.returncode in SHELL_CANNOT_RUN:
            raise PreconditionError(
                f"check could not be run (exit {e.returncode}): {e.output.strip()}"
            ) from e
        return False
    except OSError as e:
        raise PreconditionError(f"check could not be run: {e}") from e
    return True
