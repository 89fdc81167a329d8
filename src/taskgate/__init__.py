"""
taskgate — prioritized, concurrency-limited async task runner

Usage:
    from taskgate import TaskRunner, TaskDefinition, AbortController

    async def call_model(params, ctx):
        ctx.abort_signal.throw_if_aborted()
        return await llm.complete(params["prompt"])

    generate = TaskDefinition("generate", call_model)
    runner = TaskRunner(concurrency=3)
    text = await runner.enqueue_task(generate, {"prompt": "hi"}, priority=5, retry=2)
"""

from taskgate.exceptions import RunnerClosedError, TaskAborted, TaskGateError
from taskgate.runner import (
    EffectiveOptions,
    ItemState,
    RetryBackoff,
    RunnerStats,
    TaskContext,
    TaskDefinition,
    TaskOptions,
    TaskRunner,
    define_task,
)
from taskgate.signals import AbortController, AbortSignal

__all__ = [
    "TaskRunner",
    "TaskDefinition",
    "TaskOptions",
    "TaskContext",
    "EffectiveOptions",
    "define_task",
    "RetryBackoff",
    "RunnerStats",
    "ItemState",
    # Signals
    "AbortController",
    "AbortSignal",
    # Errors
    "TaskGateError",
    "TaskAborted",
    "RunnerClosedError",
]
