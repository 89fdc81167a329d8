"""
runner/definition.py — Task Definition Data Contracts

  - TaskDefinition:   immutable named template pairing an async function with
                      default options; shared read-only by every caller
  - TaskOptions:      per-layer options; None means "not set at this layer"
  - EffectiveOptions: fully-resolved options built once at enqueue time
  - TaskContext:      per-attempt context handed to the task function
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from numbers import Real
from typing import Any, Awaitable, Callable, Optional, Protocol

from taskgate.signals import AbortSignal

DEFAULT_QUEUE_KEY = "main"
DEFAULT_PRIORITY = 0
DEFAULT_RETRY = 0


class DebugHook(Protocol):
    """Diagnostic callback: (task_name, message_parts, data). Observational only."""
    def __call__(self, task_name: str, message_parts: list[str], data: dict[str, Any]) -> None: ...


TaskFn = Callable[[Any, "TaskContext"], Awaitable[Any]]


# ─────────────────────────────────────────────────────────────────────────────
# Options
# ─────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class TaskOptions:
    retry: Optional[int] = None
    queue_key: Optional[str] = None
    priority: Optional[float] = None
    abort_signal: Optional[AbortSignal] = None
    debug: Optional[DebugHook] = None

    def merged(self, **overrides: Any) -> "TaskOptions":
        """Return a copy with every non-None override applied."""
        values = {
            "retry": self.retry,
            "queue_key": self.queue_key,
            "priority": self.priority,
            "abort_signal": self.abort_signal,
            "debug": self.debug,
        }
        for key, value in overrides.items():
            if key not in values:
                raise TypeError(f"Unknown task option '{key}'")
            if value is not None:
                values[key] = value
        return TaskOptions(**values)


@dataclass(frozen=True)
class EffectiveOptions:
    retry: int
    queue_key: str
    priority: float
    abort_signal: Optional[AbortSignal]
    debug: Optional[DebugHook]

    @classmethod
    def resolve(cls, call: Optional[TaskOptions], defaults: TaskOptions) -> "EffectiveOptions":
        """
        Layered resolution: call options, then definition defaults, then the
        hardcoded default. Raises ValueError for values that would break
        queue ordering or retry accounting.
        """
        call = call or TaskOptions()

        def pick(name: str, fallback: Any) -> Any:
            value = getattr(call, name)
            if value is None:
                value = getattr(defaults, name)
            return fallback if value is None else value

        retry = pick("retry", DEFAULT_RETRY)
        queue_key = pick("queue_key", DEFAULT_QUEUE_KEY)
        priority = pick("priority", DEFAULT_PRIORITY)

        if isinstance(retry, bool) or not isinstance(retry, int) or retry < 0:
            raise ValueError(f"retry must be a non-negative integer, got {retry!r}")
        if not isinstance(queue_key, str) or not queue_key:
            raise ValueError(f"queue_key must be a non-empty string, got {queue_key!r}")
        if isinstance(priority, bool) or not isinstance(priority, Real) or math.isnan(priority):
            raise ValueError(f"priority must be a real number, got {priority!r}")

        return cls(
            retry=retry,
            queue_key=queue_key,
            priority=priority,
            abort_signal=pick("abort_signal", None),
            debug=pick("debug", None),
        )


# ─────────────────────────────────────────────────────────────────────────────
# TaskDefinition
# ─────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class TaskDefinition:
    """
    Immutable named async operation template.

    The name is used for diagnostics only. Concurrent invocations of the
    same definition are independent.
    """
    name: str
    run: TaskFn
    default_options: TaskOptions = field(default_factory=TaskOptions)

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name:
            raise ValueError("TaskDefinition.name must be a non-empty string")
        if not callable(self.run):
            raise TypeError(f"TaskDefinition.run must be callable, got {type(self.run).__name__}")


def define_task(name: Optional[str] = None, **defaults: Any) -> Callable[[TaskFn], TaskDefinition]:
    """
    Decorator form::

        @define_task(retry=2, queue_key="llm")
        async def summarize(params, ctx):
            ...
    """
    def decorator(fn: TaskFn) -> TaskDefinition:
        return TaskDefinition(
            name=name or fn.__name__,
            run=fn,
            default_options=TaskOptions().merged(**defaults),
        )
    return decorator


# ─────────────────────────────────────────────────────────────────────────────
# TaskContext
# ─────────────────────────────────────────────────────────────────────────────

def _no_debug(message_parts: list[str], data: Optional[dict[str, Any]] = None) -> None:
    return None


@dataclass(frozen=True)
class TaskContext:
    """
    Handed to the task function for one execution attempt.

    debug(message_parts, data) forwards to the submission's debug hook
    with the task name filled in; it is a no-op when no hook was given.
    """
    call_id: str
    abort_signal: AbortSignal
    task_name: str
    queue_key: str = DEFAULT_QUEUE_KEY
    attempt: int = 1
    debug: Callable[..., None] = _no_debug

    @classmethod
    def build(
        cls,
        *,
        call_id: str,
        abort_signal: AbortSignal,
        task_name: str,
        queue_key: str,
        attempt: int,
        hook: Optional[DebugHook],
        emit: Callable[[DebugHook, str, list[str], dict[str, Any]], None],
    ) -> "TaskContext":
        def _forward(message_parts: list[str], data: Optional[dict[str, Any]] = None) -> None:
            emit(hook, task_name, list(message_parts), dict(data or {}, call_id=call_id))

        debug = _no_debug if hook is None else _forward
        return cls(
            call_id=call_id,
            abort_signal=abort_signal,
            task_name=task_name,
            queue_key=queue_key,
            attempt=attempt,
            debug=debug,
        )
