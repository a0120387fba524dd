from .core import BatchReport, Scheduler
from .local import LocalScheduler, is_async_operation
from ._ray import RayScheduler

__all__ = [
    "BatchReport",
    "Scheduler",
    "LocalScheduler",
    "RayScheduler",
    "is_async_operation",
]
