"""
Stage graph builder — dependency DAG and deterministic order (pure).

Functions for stage dependency management: duplicate and unknown
reference checks, cycle detection, topological ordering, and ready-set
computation for concurrent execution. No I/O, no subprocess.
"""

from __future__ import annotations

import heapq
from collections.abc import Iterable, Iterator, Sequence

from provisioner.core.errors import CyclicDependency, DuplicateStage, UnknownDependency
from provisioner.core.models.build_spec import Stage


class StageGraph:
    """A validated DAG of stages with a fixed topological order.

    ``order`` breaks ties by declaration order: whenever several stages
    are ready, the one declared first comes first. The same input always
    yields the same order.
    """

    def __init__(self, stages: Sequence[Stage], order: Sequence[str]):
        self._stages = {s.id: s for s in stages}
        self._declared = [s.id for s in stages]
        self._position = {sid: i for i, sid in enumerate(self._declared)}
        self._deps = {s.id: tuple(dict.fromkeys(s.depends_on)) for s in stages}
        self._dependents: dict[str, list[str]] = {sid: [] for sid in self._declared}
        for sid in self._declared:
            for dep in self._deps[sid]:
                self._dependents[dep].append(sid)
        self.order: tuple[str, ...] = tuple(order)

    def __len__(self) -> int:
        return len(self._declared)

    def __iter__(self) -> Iterator[Stage]:
        """Stages in topological order."""
        return (self._stages[sid] for sid in self.order)

    def __contains__(self, stage_id: object) -> bool:
        return stage_id in self._stages

    @property
    def declared(self) -> tuple[str, ...]:
        return tuple(self._declared)

    def stage(self, stage_id: str) -> Stage:
        return self._stages[stage_id]

    def dependencies(self, stage_id: str) -> tuple[str, ...]:
        """Direct dependencies of a stage, as declared."""
        return self._deps[stage_id]

    def dependents(self, stage_id: str) -> tuple[str, ...]:
        """Stages that directly depend on ``stage_id``, in declaration order."""
        return tuple(self._dependents[stage_id])

    def ancestors(self, stage_id: str) -> set[str]:
        """Every stage ``stage_id`` transitively depends on."""
        seen: set[str] = set()
        pending = list(self._deps[stage_id])
        while pending:
            dep = pending.pop()
            if dep in seen:
                continue
            seen.add(dep)
            pending.extend(self._deps[dep])
        return seen

    def ready(self, completed: set[str], running: set[str]) -> list[str]:
        """Stages whose dependencies are all completed, in topological order.

        Args:
            completed: IDs of stages that finished successfully.
            running: IDs of stages currently executing.
        """
        done_or_running = completed | running
        return [
            sid for sid in self.order
            if sid not in done_or_running
            and all(d in completed for d in self._deps[sid])
        ]

    def levels(self) -> list[list[str]]:
        """Group stages by depth: level 0 has no dependencies."""
        depth: dict[str, int] = {}
        for sid in self.order:
            deps = self._deps[sid]
            depth[sid] = 1 + max((depth[d] for d in deps), default=-1)
        grouped: list[list[str]] = [[] for _ in range(max(depth.values(), default=-1) + 1)]
        for sid in self.order:
            grouped[depth[sid]].append(sid)
        return grouped

    def subgraph(self, targets: Iterable[str]) -> StageGraph:
        """The targets plus everything they depend on, order preserved.

        Raises:
            UnknownDependency: If a target is not part of the graph.
        """
        keep: set[str] = set()
        for target in targets:
            if target not in self._stages:
                raise UnknownDependency("<selection>", target)
            keep.add(target)
            keep |= self.ancestors(target)
        stages = [self._stages[sid] for sid in self._declared if sid in keep]
        return StageGraph(stages, [sid for sid in self.order if sid in keep])


def _find_cycle(stages: Sequence[Stage]) -> list[str] | None:
    """Depth-first search with a recursion-stack set.

    Returns:
        The stage IDs forming the first cycle found (in traversal order),
        or ``None`` if the graph is acyclic.
    """
    deps = {s.id: s.depends_on for s in stages}
    visited: set[str] = set()
    on_stack: set[str] = set()
    path: list[str] = []

    def visit(sid: str) -> list[str] | None:
        visited.add(sid)
        on_stack.add(sid)
        path.append(sid)
        for dep in deps[sid]:
            if dep in on_stack:
                return path[path.index(dep):]
            if dep not in visited:
                cycle = visit(dep)
                if cycle:
                    return cycle
        on_stack.discard(sid)
        path.pop()
        return None

    for stage in stages:
        if stage.id not in visited:
            cycle = visit(stage.id)
            if cycle:
                return cycle
    return None


def topological_order(stages: Sequence[Stage]) -> list[str]:
    """Kahn's algorithm with a declaration-order priority queue.

    Assumes the graph was already validated (no unknown refs, no cycles).
    """
    position = {s.id: i for i, s in enumerate(stages)}
    in_degree = {s.id: len(set(s.depends_on)) for s in stages}
    adj: dict[str, list[str]] = {s.id: [] for s in stages}
    for s in stages:
        for dep in dict.fromkeys(s.depends_on):
            adj[dep].append(s.id)

    heap = [(position[sid], sid) for sid, deg in in_degree.items() if deg == 0]
    heapq.heapify(heap)
    order: list[str] = []

    while heap:
        _, node = heapq.heappop(heap)
        order.append(node)
        for successor in adj[node]:
            in_degree[successor] -= 1
            if in_degree[successor] == 0:
                heapq.heappush(heap, (position[successor], successor))

    return order


def build_stage_graph(stages: Sequence[Stage]) -> StageGraph:
    """Validate stage declarations and build the DAG.

    Checks, in this order:
    - Duplicate stage IDs
    - References to non-existent stage IDs
    - Cycles (depth-first search)

    Args:
        stages: Stages in declaration order.

    Returns:
        StageGraph with a deterministic topological order.

    Raises:
        DuplicateStage, UnknownDependency, CyclicDependency.
    """
    seen: set[str] = set()
    for s in stages:
        if s.id in seen:
            raise DuplicateStage(s.id)
        seen.add(s.id)

    for s in stages:
        for dep in s.depends_on:
            if dep not in seen:
                raise UnknownDependency(s.id, dep)

    cycle = _find_cycle(stages)
    if cycle:
        raise CyclicDependency(cycle)

    return StageGraph(stages, topological_order(stages))
