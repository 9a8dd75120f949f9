from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Iterator

from .declarations import ServiceDeclaration
from .errors import CycleError, DuplicateDeclaration, InvalidDeclaration, UnknownDependency


@dataclass(frozen=True)
class DeploymentPlan:
    """Declarations in an order where every service follows its dependencies."""

    unit: str
    steps: tuple[ServiceDeclaration, ...]

    def __iter__(self) -> Iterator[ServiceDeclaration]:
        return iter(self.steps)

    def __len__(self) -> int:
        return len(self.steps)

    @property
    def names(self) -> list[str]:
        return [d.name for d in self.steps]

    def levels(self) -> list[list[ServiceDeclaration]]:
        """Group steps by dependency depth; services within a level are independent."""
        depth: dict[str, int] = {}
        for d in self.steps:
            depth[d.name] = 1 + max((depth[dep] for dep in d.depends_on), default=-1)
        out: list[list[ServiceDeclaration]] = [[] for _ in range(max(depth.values(), default=-1) + 1)]
        for d in self.steps:
            out[depth[d.name]].append(d)
        return out


def resolve(declarations: Iterable[ServiceDeclaration], unit: str = "default") -> DeploymentPlan:
    """Build a deterministic deployment plan.

    Kahn's algorithm with ties broken by service name, so the same input set
    always yields the same order. Raises DuplicateDeclaration,
    UnknownDependency, InvalidDeclaration or CycleError before anything runs.
    """
    by_name: dict[str, ServiceDeclaration] = {}
    for d in declarations:
        if d.name in by_name:
            raise DuplicateDeclaration(d.name)
        by_name[d.name] = d

    for name in sorted(by_name):
        for dep in by_name[name].depends_on:
            if dep not in by_name:
                raise UnknownDependency(dep, required_by=name)

    dependents: dict[str, set[str]] = {name: set() for name in by_name}
    incoming: dict[str, int] = {}
    for name, d in by_name.items():
        deps = set(d.depends_on)
        incoming[name] = len(deps)
        for dep in deps:
            dependents[dep].add(name)

    for name, d in sorted(by_name.items()):
        if not d.required and dependents[name]:
            raise InvalidDeclaration(
                f"service {name!r} is not required but {sorted(dependents[name])} depend on it"
            )

    ready = sorted(name for name, n in incoming.items() if n == 0)
    order: list[str] = []
    while ready:
        name = ready.pop(0)
        order.append(name)
        for child in dependents[name]:
            incoming[child] -= 1
            if incoming[child] == 0:
                ready.append(child)
        ready.sort()

    if len(order) != len(by_name):
        raise CycleError(_find_cycle(by_name, {n for n in by_name if n not in order}))

    return DeploymentPlan(unit=unit, steps=tuple(by_name[n] for n in order))


def _find_cycle(by_name: dict[str, ServiceDeclaration], stuck: set[str]) -> list[str]:
    # Every stuck node still waits on another stuck node, so walking
    # dependencies from any of them must come back around.
    path: list[str] = []
    seen: dict[str, int] = {}
    node = min(stuck)
    while node not in seen:
        seen[node] = len(path)
        path.append(node)
        node = min(dep for dep in by_name[node].depends_on if dep in stuck)
    return path[seen[node]:]
