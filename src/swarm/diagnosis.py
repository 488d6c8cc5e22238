"""Explains why pending tasks can no longer become ready."""

from __future__ import annotations

from collections.abc import Collection
from dataclasses import dataclass, field

from swarm.graph import TaskGraph

BLOCKED = "blocked"
DEADLOCK = "deadlock"
READY = "ready"


@dataclass(slots=True)
class StuckReport:
    """Stuck pending tasks split by cause.

    `blocked` maps a task to the failed tasks it transitively waits on.
    `deadlocked` maps a task to a description of the cycle or missing
    dependency that can never resolve.
    """

    blocked: dict[str, list[str]] = field(default_factory=dict)
    deadlocked: dict[str, str] = field(default_factory=dict)

    @property
    def is_deadlock(self) -> bool:
        return bool(self.deadlocked)

    @property
    def stuck(self) -> list[str]:
        return [*self.deadlocked, *self.blocked]

    def __bool__(self) -> bool:
        return bool(self.blocked or self.deadlocked)


def find_cycles(graph: TaskGraph, candidates: Collection[str]) -> list[list[str]]:
    """Strongly connected components among `candidates` that form a cycle."""

    nodes = [task_id for task_id in graph.order if task_id in candidates]
    node_set = set(nodes)
    index_of: dict[str, int] = {}
    lowlink: dict[str, int] = {}
    on_stack: set[str] = set()
    stack: list[str] = []
    cycles: list[list[str]] = []
    position = {task_id: pos for pos, task_id in enumerate(graph.order)}
    counter = 0

    def _edges(task_id: str) -> list[str]:
        return [dep for dep in graph.tasks[task_id].dependencies if dep in node_set]

    # Iterative Tarjan.
    for root in nodes:
        if root in index_of:
            continue
        work: list[tuple[str, int]] = [(root, 0)]
        while work:
            node, edge_pos = work.pop()
            if edge_pos == 0:
                index_of[node] = lowlink[node] = counter
                counter += 1
                stack.append(node)
                on_stack.add(node)
            edges = _edges(node)
            advanced = False
            while edge_pos < len(edges):
                nxt = edges[edge_pos]
                edge_pos += 1
                if nxt not in index_of:
                    work.append((node, edge_pos))
                    work.append((nxt, 0))
                    advanced = True
                    break
                if nxt in on_stack:
                    lowlink[node] = min(lowlink[node], index_of[nxt])
            if advanced:
                continue
            if lowlink[node] == index_of[node]:
                component: list[str] = []
                while True:
                    member = stack.pop()
                    on_stack.discard(member)
                    component.append(member)
                    if member == node:
                        break
                if len(component) > 1 or node in graph.tasks[node].dependencies:
                    cycles.append(sorted(component, key=position.__getitem__))
            if work:
                parent = work[-1][0]
                lowlink[parent] = min(lowlink[parent], lowlink[node])
    return cycles


def diagnose_stuck(
    graph: TaskGraph,
    pending: Collection[str],
    completed: Collection[str],
    failed: Collection[str],
) -> StuckReport:
    pending_set = set(pending)
    completed_set = set(completed)
    failed_set = set(failed)

    cyclic: dict[str, str] = {}
    for component in find_cycles(graph, pending_set):
        description = "dependency cycle among " + ", ".join(component)
        for task_id in component:
            cyclic[task_id] = description

    memo: dict[str, tuple[str, object]] = {
        task_id: (DEADLOCK, description) for task_id, description in cyclic.items()
    }

    def _resolve(task_id: str) -> tuple[str, object]:
        task = graph.tasks[task_id]
        missing = [dep for dep in task.dependencies if dep not in graph]
        if missing:
            return DEADLOCK, "missing dependency: " + ", ".join(missing)

        failed_roots: set[str] = set()
        for dep in task.dependencies:
            if dep in completed_set:
                continue
            if dep in failed_set:
                failed_roots.add(dep)
                continue
            kind, detail = memo.get(dep, (READY, None))
            if kind == DEADLOCK:
                return DEADLOCK, f"waits on deadlocked task {dep}"
            if kind == BLOCKED:
                failed_roots.update(detail)  # type: ignore[arg-type]
        if failed_roots:
            return BLOCKED, failed_roots
        return READY, None

    # Post-order walk; cycle members are already classified, so the rest is acyclic.
    for start in graph.order:
        if start not in pending_set or start in memo:
            continue
        stack: list[tuple[str, bool]] = [(start, False)]
        while stack:
            node, expanded = stack.pop()
            if node in memo:
                continue
            if expanded:
                memo[node] = _resolve(node)
                continue
            stack.append((node, True))
            for dep in graph.tasks[node].dependencies:
                if dep in pending_set and dep in graph and dep not in memo:
                    stack.append((dep, False))

    report = StuckReport()
    order = {item: pos for pos, item in enumerate(graph.order)}
    for task_id in graph.order:
        if task_id not in pending_set:
            continue
        kind, detail = memo[task_id]
        if kind == DEADLOCK:
            report.deadlocked[task_id] = str(detail)
        elif kind == BLOCKED:
            report.blocked[task_id] = sorted(detail, key=order.__getitem__)  # type: ignore[arg-type]
    return report
