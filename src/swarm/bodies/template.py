from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from swarm.bodies.base import TaskBody, TaskContext
from swarm.errors import TaskBodyError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class OutputTemplate:
    subdir: str
    suffix: str
    heading: str
    sections: tuple[tuple[str, str], ...]


TEMPLATES: dict[str, OutputTemplate] = {
    "architect": OutputTemplate(
        subdir="",
        suffix="output",
        heading="Architecture Output",
        sections=(
            ("Architecture Decisions", "[Generated architecture content would go here]"),
            ("Technical Stack", "[Technology decisions would be documented here]"),
            ("System Design", "[High-level system design would be described here]"),
        ),
    ),
    "developer": OutputTemplate(
        subdir="code",
        suffix="implementation",
        heading="Implementation",
        sections=(
            ("Code Implementation", "[Generated code would go here]"),
            ("Dependencies", "[Required dependencies would be listed here]"),
            ("Notes", "[Implementation notes and considerations]"),
        ),
    ),
    "tester": OutputTemplate(
        subdir="tests",
        suffix="tests",
        heading="Test Implementation",
        sections=(
            ("Test Cases", "[Generated test cases would go here]"),
            ("Test Data", "[Test data and fixtures]"),
            ("Coverage", "[Coverage requirements and notes]"),
        ),
    ),
    "documenter": OutputTemplate(
        subdir="docs",
        suffix="documentation",
        heading="Documentation",
        sections=(
            ("Overview", "[Documentation content would go here]"),
            ("Usage", "[Usage instructions and examples]"),
            ("References", "[Links and additional resources]"),
        ),
    ),
}


def artifact_path(context: TaskContext, subdir: str, suffix: str) -> Path:
    target_dir = context.artifacts_dir / subdir if subdir else context.artifacts_dir
    target_dir.mkdir(parents=True, exist_ok=True)
    return target_dir / f"{context.task_id}_{suffix}.md"


class TemplateBody(TaskBody):
    """Writes a placeholder markdown artifact for the task's role."""

    def __init__(self, role: str) -> None:
        if role not in TEMPLATES:
            raise TaskBodyError(f"No output template for agent type: {role}")
        self.role = role

    def render(self, context: TaskContext) -> str:
        template = TEMPLATES[self.role]
        lines = [
            f"# {template.heading} - {context.task_id}",
            "",
            f"**Agent:** {context.agent_id}",
            f"**Task:** {context.description or context.title}",
            f"**Generated:** {datetime.now(UTC).replace(microsecond=0).isoformat()}",
        ]
        if context.inputs:
            lines.append(f"**Inputs:** {', '.join(context.inputs)}")
        if context.outputs:
            lines.append(f"**Outputs:** {', '.join(context.outputs)}")
        for title, body in template.sections:
            lines.extend(["", f"## {title}", "", body])
        return "\n".join(lines) + "\n"

    def run(self, context: TaskContext) -> None:
        template = TEMPLATES[self.role]
        target = artifact_path(context, template.subdir, template.suffix)
        target.write_text(self.render(context), encoding="utf-8")
        logger.info("%s created %s", context.agent_id, target.relative_to(context.artifacts_dir))
