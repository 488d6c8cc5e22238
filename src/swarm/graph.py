"""Immutable task graph built from a task plan document."""

from __future__ import annotations

import json
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any

from swarm.errors import TaskGraphError


@dataclass(frozen=True, slots=True)
class Task:
    task_id: str
    role: str
    dependencies: tuple[str, ...] = ()
    title: str = ""
    description: str = ""
    inputs: tuple[str, ...] = ()
    outputs: tuple[str, ...] = ()
    priority: str = "medium"
    phase: str = ""

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any], *, phase: str = "") -> Task:
        try:
            task_id = str(payload["task_id"]).strip()
            role = str(payload.get("agent_type") or payload["role"]).strip()
        except KeyError as exc:
            raise TaskGraphError(f"Task definition is missing field {exc}: {payload!r}") from exc
        if not task_id:
            raise TaskGraphError("Task definition has an empty task_id.")
        return cls(
            task_id=task_id,
            role=role,
            dependencies=_string_tuple(payload.get("dependencies"), "dependencies", task_id),
            title=str(payload.get("title", "")),
            description=str(payload.get("description", "")),
            inputs=_string_tuple(payload.get("inputs"), "inputs", task_id),
            outputs=_string_tuple(payload.get("outputs"), "outputs", task_id),
            priority=str(payload.get("priority", "medium")),
            phase=phase,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "agent_type": self.role,
            "dependencies": list(self.dependencies),
            "title": self.title,
            "description": self.description,
            "inputs": list(self.inputs),
            "outputs": list(self.outputs),
            "priority": self.priority,
        }


def _string_tuple(value: Any, field_name: str, task_id: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        value = [item.strip() for item in value.split(",")]
    if not isinstance(value, (list, tuple)):
        raise TaskGraphError(f"Task {task_id}: {field_name} must be a list.")
    return tuple(str(item) for item in value if str(item).strip())


@dataclass(frozen=True, slots=True)
class TaskGraph:
    """Read-only tasks plus the linear hint order used to seed the queue.

    The hint order only breaks ties between tasks that become ready together;
    execution order is always derived from dependencies. Acyclicity is not
    checked here: a cycle shows up later as a scheduler deadlock.
    """

    tasks: Mapping[str, Task]
    order: tuple[str, ...]
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "tasks", MappingProxyType(dict(self.tasks)))
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))
        if set(self.order) != set(self.tasks) or len(self.order) != len(self.tasks):
            raise TaskGraphError("Task graph order must list every task exactly once.")

    def __len__(self) -> int:
        return len(self.order)

    def __iter__(self) -> Iterator[Task]:
        return (self.tasks[task_id] for task_id in self.order)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self.tasks

    def get(self, task_id: str) -> Task:
        try:
            return self.tasks[task_id]
        except KeyError as exc:
            raise TaskGraphError(f"Unknown task: {task_id}") from exc

    @property
    def task_ids(self) -> frozenset[str]:
        return frozenset(self.tasks)

    def dependents(self, task_id: str) -> list[str]:
        return [task.task_id for task in self if task_id in task.dependencies]

    @classmethod
    def from_tasks(
        cls,
        tasks: list[Task],
        *,
        order: list[str] | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> TaskGraph:
        by_id: dict[str, Task] = {}
        for task in tasks:
            if task.task_id in by_id:
                raise TaskGraphError(f"Duplicate task id: {task.task_id}")
            by_id[task.task_id] = task

        hint: list[str] = []
        seen: set[str] = set()
        for task_id in order or []:
            if task_id not in by_id:
                raise TaskGraphError(f"execution_order references unknown task: {task_id}")
            if task_id in seen:
                raise TaskGraphError(f"execution_order lists {task_id} more than once.")
            seen.add(task_id)
            hint.append(task_id)
        # Tasks left out of the hint keep their definition order.
        hint.extend(task.task_id for task in tasks if task.task_id not in seen)
        return cls(tasks=by_id, order=tuple(hint), metadata=dict(metadata or {}))

    @classmethod
    def from_plan(cls, plan: Mapping[str, Any]) -> TaskGraph:
        """Build a graph from a planner document.

        Accepts the phased layout (`phases.<name>.tasks`) or a flat `tasks`
        list, with an optional `execution_order` hint.
        """

        tasks: list[Task] = []
        phases = plan.get("phases")
        if isinstance(phases, Mapping):
            for phase_name, phase in phases.items():
                if not isinstance(phase, Mapping):
                    raise TaskGraphError(f"Phase {phase_name!r} must be an object.")
                for item in phase.get("tasks", []) or []:
                    if not isinstance(item, Mapping):
                        raise TaskGraphError(f"Phase {phase_name!r} has a non-object task.")
                    tasks.append(Task.from_dict(item, phase=str(phase_name)))
        flat = plan.get("tasks")
        if isinstance(flat, list):
            for item in flat:
                if not isinstance(item, Mapping):
                    raise TaskGraphError("Task list entries must be objects.")
                tasks.append(Task.from_dict(item, phase=str(item.get("phase", ""))))
        if phases is None and flat is None:
            raise TaskGraphError("Task plan has neither 'phases' nor 'tasks'.")

        order = plan.get("execution_order") or []
        if not isinstance(order, list):
            raise TaskGraphError("execution_order must be a list of task ids.")
        metadata = plan.get("metadata")
        return cls.from_tasks(
            tasks,
            order=[str(item) for item in order],
            metadata=metadata if isinstance(metadata, Mapping) else {},
        )

    def to_plan(self) -> dict[str, Any]:
        phases: dict[str, dict[str, Any]] = {}
        for task in self:
            phase = phases.setdefault(task.phase or "default", {"tasks": []})
            phase["tasks"].append(task.to_dict())
        return {
            "metadata": dict(self.metadata),
            "phases": phases,
            "execution_order": list(self.order),
        }


def load_task_graph(path: Path) -> TaskGraph:
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise TaskGraphError(f"Task plan not found: {path}") from exc
    except json.JSONDecodeError as exc:
        raise TaskGraphError(f"Invalid JSON in task plan {path}: {exc}") from exc
    if not isinstance(payload, dict):
        raise TaskGraphError(f"Task plan must be a JSON object: {path}")
    return TaskGraph.from_plan(payload)
