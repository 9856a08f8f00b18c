"""Error taxonomy for provisioner.

Configuration errors are raised before anything touches the host. The
remaining errors are raised while a step runs and end up in the step's
recorded result with a category that tells them apart.
"""


class ProvisionError(Exception):
    """Base class for all provisioner errors."""

    category = "error"


class ConfigError(ProvisionError):
    """Raised when a plan is malformed or cannot be resolved."""

    category = "config"


class CycleError(ConfigError):
    """Raised when step dependencies form a cycle.

    Attributes:
        step_ids: Steps forming the cycle, in dependency order
    """

    def __init__(self, step_ids: list[str]) -> None:
        self.step_ids = step_ids
        path = " -> ".join([*step_ids, step_ids[0]]) if step_ids else ""
        super().__init__(f"Dependency cycle between steps: {path}")


class PreconditionError(ProvisionError):
    """Raised when an idempotency check cannot be evaluated."""

    category = "precondition"


class ExecutionError(ProvisionError):
    """Raised when a step's command, process or download fails.

    Attributes:
        output: Captured output of the failing process, if any
    """

    category = "execution"

    def __init__(self, message: str, output: str = "") -> None:
        self.output = output
        super().__init__(message)


class VerificationError(ProvisionError):
    """Raised when a step ran but the host is not in the expected state."""

    category = "verification"
