from swarm.agents.architect import ArchitectAgent
from swarm.agents.base import RoleAgent
from swarm.agents.developer import DeveloperAgent
from swarm.agents.documenter import DocumenterAgent
from swarm.agents.tester import TesterAgent

AGENTS: dict[str, type[RoleAgent]] = {
    "architect": ArchitectAgent,
    "developer": DeveloperAgent,
    "tester": TesterAgent,
    "documenter": DocumenterAgent,
}

__all__ = [
    "AGENTS",
    "ArchitectAgent",
    "DeveloperAgent",
    "DocumenterAgent",
    "RoleAgent",
    "TesterAgent",
]
