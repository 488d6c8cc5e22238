from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from swarm.errors import TaskBodyError

CONTEXT_FILENAME = "task_context.json"


@dataclass(slots=True)
class TaskContext:
    """Everything a task body may know about the task it runs."""

    task_id: str
    agent_id: str
    role: str
    workspace: Path
    artifacts_dir: Path
    title: str = ""
    description: str = ""
    inputs: list[str] = field(default_factory=list)
    outputs: list[str] = field(default_factory=list)
    parallel_execution: bool = True
    max_parallel: int = 1

    @property
    def context_file(self) -> Path:
        return self.workspace / CONTEXT_FILENAME

    def to_dict(self) -> dict[str, Any]:
        return {
            "agent_id": self.agent_id,
            "agent_type": self.role,
            "task_id": self.task_id,
            "title": self.title,
            "description": self.description,
            "inputs": list(self.inputs),
            "outputs": list(self.outputs),
            "workspace": str(self.workspace),
            "session_artifacts": str(self.artifacts_dir),
            "parallel_execution": self.parallel_execution,
            "max_parallel": self.max_parallel,
        }

    def write(self) -> Path:
        self.workspace.mkdir(parents=True, exist_ok=True)
        self.context_file.write_text(
            json.dumps(self.to_dict(), ensure_ascii=False, indent=2), encoding="utf-8"
        )
        return self.context_file

    @classmethod
    def from_file(cls, path: Path) -> TaskContext:
        payload = json.loads(path.read_text(encoding="utf-8"))
        return cls(
            task_id=str(payload["task_id"]),
            agent_id=str(payload["agent_id"]),
            role=str(payload["agent_type"]),
            workspace=Path(payload["workspace"]),
            artifacts_dir=Path(payload["session_artifacts"]),
            title=str(payload.get("title", "")),
            description=str(payload.get("description", "")),
            inputs=list(payload.get("inputs", [])),
            outputs=list(payload.get("outputs", [])),
            parallel_execution=bool(payload.get("parallel_execution", True)),
            max_parallel=int(payload.get("max_parallel", 1)),
        )


class TaskBody(ABC):
    """Domain logic run by a worker for one task.

    Implementations must be picklable: process workers receive the body by
    value. Returning normally reports success; raising reports failure.
    """

    role: str = "general"

    @abstractmethod
    def run(self, context: TaskContext) -> None:
        """Execute the task inside `context.workspace`."""


class UnknownRoleBody(TaskBody):
    def __init__(self, role: str) -> None:
        self.role = role

    def run(self, context: TaskContext) -> None:
        (context.workspace / "error.log").write_text(
            f"Unknown agent type: {self.role}\n", encoding="utf-8"
        )
        raise TaskBodyError(f"Unknown agent type: {self.role}")
