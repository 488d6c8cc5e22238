from __future__ import annotations

from swarm.agents.base import RoleAgent


class DeveloperAgent(RoleAgent):
    role = "developer"
    artifact_subdir = "code"
    artifact_suffix = "implementation"
    fallback_prompt = """
You are the Developer specialist.
Implement exactly what the architecture artifacts describe.
Match existing conventions and list any new dependencies.
""".strip()
