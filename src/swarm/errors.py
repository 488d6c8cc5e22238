from __future__ import annotations


class SwarmError(RuntimeError):
    """Base class for errors raised by the swarm runtime."""


class ConfigError(SwarmError):
    """Raised when configuration values are missing or invalid."""


class TaskGraphError(SwarmError):
    """Raised when a task plan cannot be turned into a task graph."""


class StateStoreError(SwarmError):
    """Raised when shared-state operations fail."""


class StateCorruptionError(SwarmError):
    """Raised when the execution queue or job registry breaks an invariant."""


class TaskBodyError(SwarmError):
    """Raised by a task body to report a failed task."""
