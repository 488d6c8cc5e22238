from __future__ import annotations

from collections.abc import Collection
from typing import Any

from swarm.errors import StateCorruptionError
from swarm.graph import Task, TaskGraph


class ExecutionQueue:
    """Pending, completed and failed task ids over one task graph.

    A dispatched task stays pending until its result is harvested; callers
    pass the active ids to `ready` so it is never selected twice.
    """

    def __init__(self, graph: TaskGraph) -> None:
        self.graph = graph
        self._pending: list[str] = list(graph.order)
        self._completed: list[str] = []
        self._failed: list[str] = []
        self._completed_set: set[str] = set()
        self._failed_set: set[str] = set()

    @property
    def pending(self) -> tuple[str, ...]:
        return tuple(self._pending)

    @property
    def completed(self) -> tuple[str, ...]:
        return tuple(self._completed)

    @property
    def failed(self) -> tuple[str, ...]:
        return tuple(self._failed)

    @property
    def drained(self) -> bool:
        return not self._pending

    def is_ready(self, task: Task) -> bool:
        return all(dep in self._completed_set for dep in task.dependencies)

    def ready(self, active: Collection[str] = (), limit: int | None = None) -> list[Task]:
        if limit is not None and limit <= 0:
            return []
        selected: list[Task] = []
        for task_id in self._pending:
            if task_id in active:
                continue
            task = self.graph.tasks[task_id]
            if self.is_ready(task):
                selected.append(task)
                if limit is not None and len(selected) >= limit:
                    break
        return selected

    def resolve(self, task_id: str, *, success: bool) -> None:
        if task_id not in self._pending:
            state = "completed" if task_id in self._completed_set else (
                "failed" if task_id in self._failed_set else "unknown"
            )
            raise StateCorruptionError(
                f"Cannot resolve {task_id}: task is {state}, not pending."
            )
        self._pending.remove(task_id)
        if success:
            self._completed.append(task_id)
            self._completed_set.add(task_id)
        else:
            self._failed.append(task_id)
            self._failed_set.add(task_id)

    def verify(self, active: Collection[str] = ()) -> None:
        pending = set(self._pending)
        if len(pending) != len(self._pending):
            raise StateCorruptionError("Pending queue contains duplicate task ids.")
        overlaps = (
            (pending & self._completed_set)
            | (pending & self._failed_set)
            | (self._completed_set & self._failed_set)
        )
        if overlaps:
            raise StateCorruptionError(
                f"Task ids present in more than one queue set: {sorted(overlaps)}"
            )
        union = pending | self._completed_set | self._failed_set
        if union != self.graph.task_ids:
            missing = sorted(self.graph.task_ids - union)
            extra = sorted(union - self.graph.task_ids)
            raise StateCorruptionError(
                f"Queue sets do not cover the task graph (missing={missing}, extra={extra})."
            )
        stray = sorted(set(active) - pending)
        if stray:
            raise StateCorruptionError(f"Active jobs are not pending: {stray}")

    def counts(self) -> dict[str, int]:
        return {
            "total": len(self.graph),
            "pending": len(self._pending),
            "completed": len(self._completed),
            "failed": len(self._failed),
        }

    def snapshot(self) -> dict[str, Any]:
        return {
            "queue": list(self._pending),
            "completed": list(self._completed),
            "failed": list(self._failed),
        }

    @classmethod
    def from_snapshot(cls, graph: TaskGraph, payload: dict[str, Any]) -> ExecutionQueue:
        queue = cls(graph)
        queue._pending = [str(item) for item in payload.get("queue", [])]
        queue._completed = [str(item) for item in payload.get("completed", [])]
        queue._failed = [str(item) for item in payload.get("failed", [])]
        queue._completed_set = set(queue._completed)
        queue._failed_set = set(queue._failed)
        queue.verify()
        return queue
