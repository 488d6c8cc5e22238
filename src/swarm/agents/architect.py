from __future__ import annotations

from swarm.agents.base import RoleAgent


class ArchitectAgent(RoleAgent):
    role = "architect"
    fallback_prompt = """
You are the Architect specialist.
Analyze requirements, define components and interfaces,
and record technology decisions with their trade-offs.
You produce designs, not code.
""".strip()
