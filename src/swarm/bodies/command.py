from __future__ import annotations

import subprocess
from pathlib import Path

from swarm.bodies.base import TaskBody, TaskContext
from swarm.errors import TaskBodyError

OUTPUT_LOG = "output.log"


class CommandBody(TaskBody):
    """Runs an external command with the task context file as input.

    `command` entries may use `{context}`, `{workspace}`, `{task_id}`,
    `{agent_id}` and `{role}` placeholders. Combined stdout/stderr goes to
    `output.log` in the task workspace; a non-zero exit fails the task.
    """

    def __init__(
        self,
        command: list[str],
        *,
        role: str = "general",
        timeout_seconds: float | None = None,
    ) -> None:
        if not command:
            raise TaskBodyError("CommandBody requires a non-empty command.")
        self.command = list(command)
        self.role = role
        self.timeout_seconds = timeout_seconds

    @classmethod
    def for_script(
        cls,
        script: Path,
        *,
        role: str,
        timeout_seconds: float | None = None,
    ) -> CommandBody:
        return cls(
            ["bash", str(script), "{context}"],
            role=role,
            timeout_seconds=timeout_seconds,
        )

    def build_command(self, context: TaskContext) -> list[str]:
        values = {
            "context": str(context.context_file),
            "workspace": str(context.workspace),
            "task_id": context.task_id,
            "agent_id": context.agent_id,
            "role": context.role,
        }
        return [part.format(**values) for part in self.command]

    def run(self, context: TaskContext) -> None:
        command = self.build_command(context)
        log_path = context.workspace / OUTPUT_LOG
        with log_path.open("w", encoding="utf-8") as log_file:
            try:
                proc = subprocess.run(
                    command,
                    cwd=context.workspace,
                    stdout=log_file,
                    stderr=subprocess.STDOUT,
                    text=True,
                    timeout=self.timeout_seconds,
                )
            except FileNotFoundError as exc:
                raise TaskBodyError(f"Command not found: {command[0]}") from exc
            except subprocess.TimeoutExpired as exc:
                raise TaskBodyError(
                    f"Command timed out after {self.timeout_seconds:.1f}s: {command[0]}"
                ) from exc
        if proc.returncode != 0:
            raise TaskBodyError(
                f"Command exited with code {proc.returncode}; see {log_path}"
            )
