from swarm.bodies.base import TaskBody, TaskContext, UnknownRoleBody
from swarm.bodies.command import CommandBody
from swarm.bodies.template import TemplateBody

__all__ = [
    "CommandBody",
    "TaskBody",
    "TaskContext",
    "TemplateBody",
    "UnknownRoleBody",
]
