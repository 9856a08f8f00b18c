"""Dependency ordering of plan steps."""

import heapq
from collections.abc import Iterable, Iterator
from dataclasses import dataclass

from provisioner.config.models import StepBase
from provisioner.core.errors import ConfigError, CycleError


@dataclass(frozen=True)
class ExecutionPlan:
    """Steps in an order that respects every declared dependency."""

    steps: tuple[StepBase, ...]

    def __iter__(self) -> Iterator[StepBase]:
        return iter(self.steps)

    def __len__(self) -> int:
        return len(self.steps)

    @property
    def ids(self) -> list[str]:
        """Step ids in execution order."""
        return [step.id for step in self.steps]


class DependencyGraph:
    """Partial order over steps derived from their ``depends-on`` lists.

    Steps that are not ordered relative to each other keep their declaration
    order, so the same plan always resolves to the same sequence.
    """

    def __init__(self, steps: Iterable[StepBase]) -> None:
        """Build the graph.

        Args:
            steps: Steps in declaration order

        Raises:
            ConfigError: On duplicate ids or dependencies on unknown steps
        """
        self._steps = list(steps)
        self._by_id: dict[str, StepBase] = {}
        self._position: dict[str, int] = {}
        self._children: dict[str, list[str]] = {}

        for position, step in enumerate(self._steps):
            if step.id in self._by_id:
                raise ConfigError(f"Duplicate step id '{step.id}'")
            self._by_id[step.id] = step
            self._position[step.id] = position
            self._children[step.id] = []

        for step in self._steps:
            for dep in dict.fromkeys(step.depends_on):
                if dep not in self._by_id:
                    raise ConfigError(f"Step '{step.id}' depends on unknown step '{dep}'")
                self._children[dep].append(step.id)

    def dependencies(self, step_id: str) -> tuple[str, ...]:
        """Direct prerequisites of a step."""
        return tuple(dict.fromkeys(self._by_id[step_id].depends_on))

    def dependents(self, step_id: str) -> set[str]:
        """Every step that directly or transitively depends on a step."""
        found: set[str] = set()
        pending = list(self._children[step_id])
        while pending:
            current = pending.pop()
            if current not in found:
                found.add(current)
                pending.extend(self._children[current])
        return found

    def resolve_order(self) -> ExecutionPlan:
        """Topologically sort the steps.

        Returns:
            ExecutionPlan with ties broken by declaration order

        Raises:
            CycleError: If the dependencies contain a cycle
        """
        indegree = {step.id: len(self.dependencies(step.id)) for step in self._steps}
        ready = [(self._position[sid], sid) for sid, degree in indegree.items() if degree == 0]
        heapq.heapify(ready)

        order: list[StepBase] = []
        while ready:
            _, step_id = heapq.heappop(ready)
            order.append(self._by_id[step_id])
            for child in self._children[step_id]:
                indegree[child] -= 1
                if indegree[child] == 0:
                    heapq.heappush(ready, (self._position[child], child))

        if len(order) < len(self._steps):
            remaining = {sid for sid, degree in indegree.items() if degree > 0}
            raise CycleError(self._find_cycle(remaining))

        return ExecutionPlan(tuple(order))

    def _find_cycle(self, remaining: set[str]) -> list[str]:
        # Every unresolved step still waits on another unresolved step, so
        # following those edges from any of them must revisit a step.
        start = min(remaining, key=self._position.__getitem__)
        path: list[str] = []
        seen: dict[str, int] = {}
        current = start
        while current not in seen:
            seen[current] = len(path)
            path.append(current)
            current = next(dep for dep in self.dependencies(current) if dep in remaining)
        return path[seen[current] :]
