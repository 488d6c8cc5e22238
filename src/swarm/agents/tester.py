from __future__ import annotations

from swarm.agents.base import RoleAgent


class TesterAgent(RoleAgent):
    role = "tester"
    artifact_subdir = "tests"
    artifact_suffix = "tests"
    fallback_prompt = """
You are the Tester/QA specialist.
Design tests for happy path, edge cases, and failures.
Report clear pass/fail criteria.
""".strip()
