"""taskplan.

Client library for describing multi-step execution plans and running them
on a remote operator:
- an immutable template model with a fluent builder
- canonical JSON encoding of templates
- task runs consumed by callback or by async iteration
"""

__version__ = "0.1.0"

from taskplan.errors import ServiceExecutionError, TransportError, ValidationError
from taskplan.producer import Producer
from taskplan.run.events import UpdateEvent
from taskplan.run.runner import TaskOutcome, TaskRun, TaskRunner
from taskplan.template.builder import TemplateBuilder
from taskplan.template.nodes import Template

__all__ = [
    "__version__",
    "Producer",
    "ServiceExecutionError",
    "TaskOutcome",
    "TaskRun",
    "TaskRunner",
    "Template",
    "TemplateBuilder",
    "TransportError",
    "UpdateEvent",
    "ValidationError",
]
