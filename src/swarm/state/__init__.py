from swarm.state.queue import ExecutionQueue
from swarm.state.registry import ActiveJob, ActiveJobRegistry
from swarm.state.store import StateStore

__all__ = ["ActiveJob", "ActiveJobRegistry", "ExecutionQueue", "StateStore"]
