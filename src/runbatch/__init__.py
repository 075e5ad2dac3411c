"""runbatch - Run async work in fixed-size batches, results in insertion order."""

from runbatch.errors import InvalidWorkItem, QueueClosed, QueueError
from runbatch.models import Factory, Pending, QueueConfig, QueueState, WorkItem
from runbatch.queue import BatchQueue

__version__ = "0.1.0"
__all__ = [
    "BatchQueue",
    "QueueConfig",
    "QueueState",
    "WorkItem",
    "Factory",
    "Pending",
    "QueueError",
    "InvalidWorkItem",
    "QueueClosed",
]
