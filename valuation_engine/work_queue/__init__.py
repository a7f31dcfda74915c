"""Deferred work queue for slow sources and its background consumer."""

from .consumer import DrainReport, DrainResult, QueueConsumer
from .queue import WorkQueue

__all__ = [
    "DrainReport",
    "DrainResult",
    "QueueConsumer",
    "WorkQueue",
]
