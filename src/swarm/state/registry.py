from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from swarm.errors import StateCorruptionError

if TYPE_CHECKING:
    from swarm.worker import Worker


@dataclass(slots=True)
class ActiveJob:
    task_id: str
    role: str
    agent_id: str
    started_at: float
    pid: int | None = None
    worker: Worker | None = field(default=None, repr=False, compare=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "role": self.role,
            "agent_id": self.agent_id,
            "pid": self.pid,
            "started_at": datetime.fromtimestamp(self.started_at, UTC)
            .replace(microsecond=0)
            .isoformat(),
        }


class ActiveJobRegistry:
    """In-flight jobs keyed by task id, bounded by the concurrency limit."""

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError("Registry capacity must be at least 1.")
        self.capacity = capacity
        self._jobs: dict[str, ActiveJob] = {}
        self.peak = 0

    def __len__(self) -> int:
        return len(self._jobs)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._jobs

    def __iter__(self) -> Iterator[ActiveJob]:
        return iter(list(self._jobs.values()))

    @property
    def available(self) -> int:
        return max(0, self.capacity - len(self._jobs))

    def ids(self) -> frozenset[str]:
        return frozenset(self._jobs)

    def get(self, task_id: str) -> ActiveJob | None:
        return self._jobs.get(task_id)

    def add(self, job: ActiveJob) -> None:
        if job.task_id in self._jobs:
            raise StateCorruptionError(f"Task {job.task_id} is already dispatched.")
        if len(self._jobs) >= self.capacity:
            raise StateCorruptionError(
                f"Dispatching {job.task_id} would exceed the concurrency limit {self.capacity}."
            )
        self._jobs[job.task_id] = job
        self.peak = max(self.peak, len(self._jobs))

    def pop(self, task_id: str) -> ActiveJob:
        try:
            return self._jobs.pop(task_id)
        except KeyError as exc:
            raise StateCorruptionError(f"Task {task_id} is not in the job registry.") from exc

    def snapshot(self) -> dict[str, Any]:
        return {"active_jobs": {job.task_id: job.to_dict() for job in self._jobs.values()}}
