"""
runner/ — Task Runner

Lanes (priority queue + concurrency gate) per queue key, retry by
re-enqueue, cooperative cancellation through composed abort signals.
"""

from taskgate.runner.definition import (
    EffectiveOptions,
    TaskContext,
    TaskDefinition,
    TaskOptions,
    define_task,
)
from taskgate.runner.gate import ConcurrencyGate
from taskgate.runner.queue import PriorityQueue
from taskgate.runner.retry import RetryBackoff
from taskgate.runner.runner import ItemState, QueuedItem, RunnerStats, TaskRunner

__all__ = [
    "TaskRunner",
    "TaskDefinition",
    "TaskOptions",
    "TaskContext",
    "EffectiveOptions",
    "define_task",
    "ConcurrencyGate",
    "PriorityQueue",
    "RetryBackoff",
    "ItemState",
    "QueuedItem",
    "RunnerStats",
]
