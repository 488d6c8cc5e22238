from __future__ import annotations

import asyncio
import logging
from typing import Any

from swarm.backends.base import AgentBackend, BackendExecutionError
from swarm.bodies.base import TaskBody, TaskContext
from swarm.bodies.template import artifact_path
from swarm.errors import TaskBodyError

logger = logging.getLogger(__name__)


class RoleAgent(TaskBody):
    """Task body that prompts a backend and stores the answer as an artifact."""

    role: str = "agent"
    artifact_subdir: str = ""
    artifact_suffix: str = "output"
    fallback_prompt: str = "You are a software specialist working inside an agent swarm."

    def __init__(
        self,
        backend: AgentBackend,
        *,
        model: str | None = None,
        timeout_seconds: float | None = None,
        system_prompt: str | None = None,
    ) -> None:
        self.backend = backend
        self.model = model
        self.timeout_seconds = timeout_seconds
        self.system_prompt = (system_prompt or self.fallback_prompt).strip()

    def build_instruction(self, context: TaskContext) -> str:
        lines = [f"Task {context.task_id}: {context.title or context.description}"]
        if context.description and context.description != context.title:
            lines.extend(["", context.description])
        if context.inputs:
            lines.extend(["", "Inputs: " + ", ".join(context.inputs)])
        if context.outputs:
            lines.append("Expected outputs: " + ", ".join(context.outputs))
        existing: list[str] = []
        if context.artifacts_dir.is_dir():
            existing = sorted(
                str(path.relative_to(context.artifacts_dir))
                for path in context.artifacts_dir.rglob("*.md")
            )
        if existing:
            lines.extend(["", "Artifacts produced so far:", *(f"- {name}" for name in existing)])
        lines.extend(["", "Answer in Markdown."])
        return "\n".join(lines)

    def build_context(self, context: TaskContext) -> dict[str, Any]:
        run_context: dict[str, Any] = {
            "agent_id": context.agent_id,
            "role": self.role,
            "artifacts_dir": str(context.artifacts_dir),
            "_working_directory": str(context.workspace),
        }
        if self.model:
            run_context["model"] = self.model
        return run_context

    async def respond(self, context: TaskContext) -> str:
        return await self.backend.complete(
            self.system_prompt,
            self.build_instruction(context),
            self.build_context(context),
            timeout_seconds=self.timeout_seconds,
        )

    def run(self, context: TaskContext) -> None:
        try:
            content = asyncio.run(self.respond(context))
        except BackendExecutionError as exc:
            raise TaskBodyError(f"{self.role} agent failed: {exc}") from exc
        if not content:
            raise TaskBodyError(f"{self.role} agent returned no content for {context.task_id}")

        target = artifact_path(context, self.artifact_subdir, self.artifact_suffix)
        target.write_text(
            f"# {context.task_id} ({context.agent_id})\n\n{content}\n", encoding="utf-8"
        )
        logger.info("%s wrote %s", context.agent_id, target.relative_to(context.artifacts_dir))
