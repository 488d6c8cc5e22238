from swarm.backends.base import (
    AgentBackend,
    BackendExecutionError,
    BackendProcessError,
    BackendTimeoutError,
)
from swarm.backends.cli import ClaudeBackend, CliBackend, CodexBackend

BACKENDS: dict[str, type[CliBackend]] = {
    "claude": ClaudeBackend,
    "codex": CodexBackend,
}

__all__ = [
    "BACKENDS",
    "AgentBackend",
    "BackendExecutionError",
    "BackendProcessError",
    "BackendTimeoutError",
    "ClaudeBackend",
    "CliBackend",
    "CodexBackend",
]
