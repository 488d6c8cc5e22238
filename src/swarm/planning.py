"""Static task planning used when no planner-produced plan is supplied."""

from __future__ import annotations

import re
from datetime import UTC, datetime
from typing import Any

from swarm.graph import TaskGraph

SECTION_PATTERNS = {
    "purpose": r"PURPOSE|DESCRIPTION",
    "features": r"FEATURES|FUNCTIONALITY",
    "constraints": r"CONSTRAINTS|TECHNICAL",
    "requirements": r"REQUIREMENTS|SPECS",
}

# (phase, task_id, role, priority, dependencies, title, description, inputs, outputs)
_STATIC_TASKS: list[tuple[str, str, str, str, list[str], str, str, list[str], list[str]]] = [
    (
        "architecture", "arch_001", "architect", "critical", [],
        "Analyze requirements and define system architecture",
        "Review specification and create high-level system architecture",
        ["specification"], ["architecture_document", "tech_stack_decisions"],
    ),
    (
        "architecture", "arch_002", "architect", "high", ["arch_001"],
        "Define data models and database schema",
        "Design data structures and database schema based on requirements",
        ["architecture_document"], ["data_models", "database_schema"],
    ),
    (
        "architecture", "arch_003", "architect", "high", ["arch_002"],
        "Define API specifications and interfaces",
        "Create API contracts and interface definitions",
        ["data_models"], ["api_specification"],
    ),
    (
        "implementation", "impl_001", "developer", "critical", ["arch_001"],
        "Setup project structure and dependencies",
        "Initialize project with proper structure and install dependencies",
        ["architecture_document", "tech_stack_decisions"],
        ["project_structure", "dependency_config"],
    ),
    (
        "implementation", "impl_002", "developer", "high", ["impl_001", "arch_002"],
        "Implement data layer and models",
        "Create database models and data access layer",
        ["data_models", "database_schema"], ["data_layer_code"],
    ),
    (
        "implementation", "impl_003", "developer", "critical", ["impl_002"],
        "Implement core business logic",
        "Develop main application features and business logic",
        ["data_layer_code", "api_specification"], ["business_logic_code"],
    ),
    (
        "implementation", "impl_004", "developer", "high", ["impl_003", "arch_003"],
        "Implement API endpoints",
        "Create REST API endpoints based on specifications",
        ["business_logic_code", "api_specification"], ["api_endpoints_code"],
    ),
    (
        "implementation", "impl_005", "developer", "high", ["impl_004"],
        "Implement user interface",
        "Create user interface components and views",
        ["api_endpoints_code"], ["ui_code"],
    ),
    (
        "testing", "test_001", "tester", "high", ["impl_002"],
        "Create unit tests for data layer",
        "Write comprehensive unit tests for data models and access layer",
        ["data_layer_code"], ["unit_tests_data"],
    ),
    (
        "testing", "test_002", "tester", "high", ["impl_003"],
        "Create unit tests for business logic",
        "Write unit tests for core business logic functions",
        ["business_logic_code"], ["unit_tests_logic"],
    ),
    (
        "testing", "test_003", "tester", "high", ["impl_004"],
        "Create API integration tests",
        "Write integration tests for API endpoints",
        ["api_endpoints_code"], ["integration_tests"],
    ),
    (
        "testing", "test_004", "tester", "medium", ["impl_005"],
        "Create end-to-end tests",
        "Write E2E tests covering main user workflows",
        ["ui_code"], ["e2e_tests"],
    ),
    (
        "documentation", "docs_001", "documenter", "medium", ["arch_003", "impl_005"],
        "Create technical documentation",
        "Write comprehensive technical documentation",
        ["architecture_document", "api_specification", "ui_code"], ["technical_docs"],
    ),
    (
        "documentation", "docs_002", "documenter", "medium", ["impl_005"],
        "Create user documentation",
        "Write user guides and API documentation",
        ["ui_code", "api_specification"], ["user_docs"],
    ),
    (
        "documentation", "docs_003", "documenter", "low", ["test_004"],
        "Create deployment guide",
        "Write deployment and setup instructions",
        ["project_structure", "dependency_config"], ["deployment_guide"],
    ),
]

_PHASE_INFO = {
    "architecture": ("arch", "System architecture and design decisions"),
    "implementation": ("impl", "Code implementation and development"),
    "testing": ("test", "Testing and quality assurance"),
    "documentation": ("docs", "Documentation and deployment guides"),
}


def extract_section(content: str, pattern: str, *, max_lines: int = 20) -> str:
    """Return up to `max_lines` lines starting at the first heading matching `pattern`."""

    lines = content.splitlines()
    regex = re.compile(pattern, re.IGNORECASE)
    for index, line in enumerate(lines):
        if regex.search(line):
            return " ".join(item.strip() for item in lines[index : index + max_lines]).strip()
    return "Not specified"


def analyze_specification(content: str) -> dict[str, str]:
    return {name: extract_section(content, pattern) for name, pattern in SECTION_PATTERNS.items()}


def static_task_plan(spec_text: str, *, session_id: str = "") -> dict[str, Any]:
    phases: dict[str, dict[str, Any]] = {}
    for phase, task_id, role, priority, deps, title, description, inputs, outputs in _STATIC_TASKS:
        phase_id, phase_description = _PHASE_INFO[phase]
        entry = phases.setdefault(
            phase,
            {"phase_id": phase_id, "description": phase_description, "tasks": []},
        )
        entry["tasks"].append(
            {
                "task_id": task_id,
                "title": title,
                "description": description,
                "agent_type": role,
                "priority": priority,
                "dependencies": list(deps),
                "inputs": list(inputs),
                "outputs": list(outputs),
            }
        )
    return {
        "metadata": {
            "session_id": session_id,
            "created_at": datetime.now(UTC).replace(microsecond=0).isoformat(),
            "spec_analysis": analyze_specification(spec_text),
        },
        "phases": phases,
        "execution_order": [item[1] for item in _STATIC_TASKS],
    }


def static_task_graph(spec_text: str, *, session_id: str = "") -> TaskGraph:
    return TaskGraph.from_plan(static_task_plan(spec_text, session_id=session_id))
