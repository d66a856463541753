"""Ordering of interdependent repositories.

Repositories are placed with a depth-first topological sort so every
prerequisite precedes the repositories that declare it. Cycles of any length
are detected through the set of repositories still being visited, and every
dependency that points at a skipped or undeclared repository is collected
over the whole pass before anything is reported.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterator, List, Mapping, Optional, Sequence, Set, Tuple

from .config import ConfigStore
from .models import RepoSpec, load_repo_specs

logger = logging.getLogger(__name__)

SKIPPED = "skipped"
UNDECLARED = "undeclared"


@dataclass(frozen=True)
class MissingDependency:
    repo: str
    dependency: str
    reason: str

    def describe(self) -> str:
        if self.reason == SKIPPED:
            return f"{self.repo} depends on {self.dependency}, which is marked skipped"
        return f"{self.repo} depends on {self.dependency}, which is not declared"


class ResolutionError(RuntimeError):
    """Raised when repositories cannot be ordered."""


class CyclicDependencyError(ResolutionError):
    """Raised when repositories depend on each other, directly or transitively."""

    def __init__(
        self,
        cycles: Sequence[Tuple[str, ...]],
        missing: Sequence[MissingDependency] = (),
    ) -> None:
        self.cycles = [tuple(cycle) for cycle in cycles]
        self.missing = list(missing)
        rendered = "; ".join(" -> ".join(cycle) for cycle in self.cycles)
        super().__init__(f"Cyclic dependency detected: {rendered}")


class MissingDependencyError(ResolutionError):
    """Raised when a repository depends on a skipped or undeclared repository."""

    def __init__(self, missing: Sequence[MissingDependency]) -> None:
        self.missing = list(missing)
        rendered = "; ".join(item.describe() for item in self.missing)
        super().__init__(f"Missing dependency: {rendered}")


@dataclass(frozen=True)
class DependencyGraph:
    """Dependencies of every declared, non-skipped repository."""

    edges: Mapping[str, Tuple[str, ...]]

    @classmethod
    def from_specs(cls, specs: Mapping[str, RepoSpec]) -> "DependencyGraph":
        return cls(edges={repo_id: spec.deps for repo_id, spec in specs.items() if not spec.skipped})

    def dependencies(self, repo_id: str) -> Tuple[str, ...]:
        return self.edges.get(repo_id, ())

    def __contains__(self, repo_id: str) -> bool:
        return repo_id in self.edges

    def __iter__(self) -> Iterator[str]:
        return iter(self.edges)

    def __len__(self) -> int:
        return len(self.edges)


def check_dependencies(
    repo_id: str,
    graph: DependencyGraph,
    specs: Mapping[str, RepoSpec],
) -> List[MissingDependency]:
    """Report every dependency of ``repo_id`` that cannot be provisioned."""

    missing: List[MissingDependency] = []
    for dependency in graph.dependencies(repo_id):
        if dependency in graph:
            continue
        spec = specs.get(dependency)
        reason = SKIPPED if spec is not None and spec.skipped else UNDECLARED
        missing.append(MissingDependency(repo_id, dependency, reason))
    return missing


def _canonical_cycle(cycle: Sequence[str]) -> Tuple[str, ...]:
    # cycle repeats its first node at the end; rotate so the smallest id leads
    nodes = list(cycle[:-1])
    start = nodes.index(min(nodes))
    rotated = nodes[start:] + nodes[:start]
    return tuple(rotated + [rotated[0]])


def resolve(graph: DependencyGraph, specs: Mapping[str, RepoSpec]) -> List[str]:
    """Order repositories so that each one follows all of its dependencies.

    Raises :class:`CyclicDependencyError` when any cycle exists, otherwise
    :class:`MissingDependencyError` when any dependency is skipped or
    undeclared. No order is returned in either case.
    """

    order: List[str] = []
    done: Set[str] = set()
    visiting: List[str] = []
    cycles: List[Tuple[str, ...]] = []
    missing: List[MissingDependency] = []

    def visit(repo_id: str) -> None:
        visiting.append(repo_id)
        missing.extend(check_dependencies(repo_id, graph, specs))
        for dependency in graph.dependencies(repo_id):
            if dependency not in graph or dependency in done:
                continue
            if dependency in visiting:
                cycle = _canonical_cycle(visiting[visiting.index(dependency):] + [dependency])
                if cycle not in cycles:
                    cycles.append(cycle)
                continue
            visit(dependency)
        visiting.pop()
        done.add(repo_id)
        order.append(repo_id)

    for repo_id in graph:
        if repo_id not in done:
            visit(repo_id)

    for item in missing:
        logger.debug("Unresolvable dependency: %s", item.describe())
    if cycles:
        raise CyclicDependencyError(cycles, missing)
    if missing:
        raise MissingDependencyError(missing)

    logger.debug("Resolved repository order: %s", ", ".join(order))
    return order


def resolve_repos(
    config: ConfigStore,
    specs: Optional[Mapping[str, RepoSpec]] = None,
) -> List[str]:
    """Build the dependency graph from the store and resolve it."""

    if specs is None:
        specs = load_repo_specs(config)
    graph = DependencyGraph.from_specs(specs)
    logger.info("Resolving %d repositories (%d skipped)", len(graph), len(specs) - len(graph))
    return resolve(graph, specs)
