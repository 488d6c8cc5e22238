from __future__ import annotations

from swarm.agents.base import RoleAgent


class DocumenterAgent(RoleAgent):
    role = "documenter"
    artifact_subdir = "docs"
    artifact_suffix = "documentation"
    fallback_prompt = """
You are the Documenter/Technical Writer specialist.
Write concise and accurate documentation for what was built.
""".strip()
