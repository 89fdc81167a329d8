"""
runner/runner.py — TaskRunner

Concurrency-limited, prioritized execution of async task functions.

Design
------
* Pure asyncio, single event loop. Queue and gate state is only touched
  from the loop thread, so no locks are needed.
* One lane per queue key: a PriorityQueue plus a ConcurrencyGate. Lanes are
  created lazily and live as long as the runner.
* Pull-based pump: every gate release, and every enqueue (deferred to the
  next loop iteration), dequeues-and-admits until the lane is empty or
  the gate is saturated.
* Retry is re-enqueue: a failed item with budget left goes back on its
  lane at the same priority with a fresh sequence number.
* Cancellation is cooperative: each item gets a runner-owned
  AbortController composed with the caller's signal. Items that are not
  running are rejected as soon as the signal fires; running items see the
  signal through their TaskContext.
* Exactly one terminal settlement per submission: success value, the task's
  own exception, or TaskAborted.

Usage::

    runner = TaskRunner(concurrency=3)
    fut = runner.enqueue_task(summarize, {"text": doc}, priority=5, retry=2)
    summary = await fut
    ...
    await runner.shutdown()
"""

from __future__ import annotations

import asyncio
import itertools
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

from taskgate.exceptions import RunnerClosedError, TaskAborted
from taskgate.observability.logger import bind_call, get_logger
from taskgate.runner.definition import (
    DebugHook,
    EffectiveOptions,
    TaskContext,
    TaskDefinition,
    TaskOptions,
)
from taskgate.runner.gate import ConcurrencyGate, validate_limit
from taskgate.runner.queue import PriorityQueue
from taskgate.runner.retry import NO_BACKOFF, RetryBackoff
from taskgate.signals import AbortController, AbortSignal

log = get_logger(__name__)

DEFAULT_CONCURRENCY = 3


# ─────────────────────────────────────────────────────────────────────────────
# QueuedItem
# ─────────────────────────────────────────────────────────────────────────────

class ItemState(str, Enum):
    PENDING   = "pending"
    RUNNING   = "running"
    RETRYING  = "retrying"    # waiting out a backoff delay before re-enqueue
    SUCCEEDED = "succeeded"
    FAILED    = "failed"
    ABORTED   = "aborted"

    @property
    def terminal(self) -> bool:
        return self in (ItemState.SUCCEEDED, ItemState.FAILED, ItemState.ABORTED)


@dataclass(eq=False)
class QueuedItem:
    definition: TaskDefinition
    params: Any
    options: EffectiveOptions
    sequence: int
    retries_left: int
    future: asyncio.Future
    controller: AbortController
    signal: AbortSignal
    state: ItemState = ItemState.PENDING
    attempt: int = 0
    retry_handle: Optional[asyncio.TimerHandle] = None
    unsubscribe: Optional[Callable[[], None]] = None

    @property
    def name(self) -> str:
        return self.definition.name

    @property
    def priority(self) -> float:
        return self.options.priority

    @property
    def queue_key(self) -> str:
        return self.options.queue_key


# ─────────────────────────────────────────────────────────────────────────────
# RunnerStats
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class RunnerStats:
    submitted: int = 0
    succeeded: int = 0
    failed: int = 0
    aborted: int = 0
    retried: int = 0

    @property
    def settled(self) -> int:
        return self.succeeded + self.failed + self.aborted


class _Lane:
    """Queue + gate for one queue key."""

    def __init__(self, key: str, limit: int, runner: "TaskRunner") -> None:
        self.key = key
        self.queue: PriorityQueue[QueuedItem] = PriorityQueue()
        self.gate = ConcurrencyGate(limit, on_release=lambda: runner._pump(self))
        self.pump_scheduled = False


# ─────────────────────────────────────────────────────────────────────────────
# TaskRunner
# ─────────────────────────────────────────────────────────────────────────────

class TaskRunner:
    """
    Owns the lanes for every queue key and schedules admission and retries.

    Lifecycle::

        runner = TaskRunner(concurrency=3, queue_limits={"llm": 1})
        fut = runner.enqueue_task(defn, params)   # non-blocking
        await runner.shutdown()                   # abort outstanding, wait in-flight

    Introspection::

        runner.stats              # RunnerStats counters
        runner.snapshot()         # {queue_key: {"pending", "running", "limit"}}
    """

    def __init__(
        self,
        concurrency: int = DEFAULT_CONCURRENCY,
        *,
        queue_limits: Optional[dict[str, int]] = None,
        backoff: Optional[RetryBackoff] = None,
        name: str = "runner",
    ) -> None:
        self._concurrency = validate_limit(concurrency)
        self._queue_limits = {k: validate_limit(v) for k, v in (queue_limits or {}).items()}
        self._backoff = backoff or NO_BACKOFF
        self._name = name

        self._lanes: dict[str, _Lane] = {}
        self._sequence = itertools.count()
        self._items: set[QueuedItem] = set()
        self._executions: set[asyncio.Task] = set()
        self._closed = False

        self.stats = RunnerStats()
        self._log = log.bind(runner=name)
        self._log.info(
            "runner.init",
            concurrency=self._concurrency,
            queue_limits=self._queue_limits,
            backoff_base_delay=self._backoff.base_delay,
        )

    # ── Factory ───────────────────────────────────────────────────────────────

    @classmethod
    def from_settings(cls, settings, name: str = "runner") -> "TaskRunner":
        cfg = settings.runner
        return cls(
            concurrency=cfg.concurrency,
            queue_limits=dict(cfg.queue_limits),
            backoff=RetryBackoff.from_config(cfg.backoff),
            name=name,
        )

    # ── Submission ────────────────────────────────────────────────────────────

    def enqueue_task(
        self,
        definition: TaskDefinition,
        params: Any = None,
        options: Optional[TaskOptions] = None,
        **overrides: Any,
    ) -> asyncio.Future:
        """
        Submit one invocation. Returns a future settled exactly once.

        Call-site ``options`` (and keyword ``overrides``, which win over
        ``options``) are layered over ``definition.default_options``.
        Must be called with a running event loop. Never blocks.
        """
        if self._closed:
            raise RunnerClosedError(f"TaskRunner '{self._name}' has been shut down")
        if overrides:
            options = (options or TaskOptions()).merged(**overrides)
        effective = EffectiveOptions.resolve(options, definition.default_options)

        loop = asyncio.get_running_loop()
        controller = AbortController()
        item = QueuedItem(
            definition=definition,
            params=params,
            options=effective,
            sequence=next(self._sequence),
            retries_left=effective.retry,
            future=loop.create_future(),
            controller=controller,
            signal=AbortSignal.any([effective.abort_signal, controller.signal]),
        )
        self.stats.submitted += 1
        self._items.add(item)
        item.future.add_done_callback(lambda fut: self._on_future_done(item, fut))
        self._emit(item, "enqueue", {
            "queue": item.queue_key,
            "priority": item.priority,
            "sequence": item.sequence,
            "retry": effective.retry,
        })

        if item.signal.aborted:
            self._settle_aborted(item)
            return item.future

        item.unsubscribe = item.signal.add_listener(lambda _signal: self._on_abort(item))
        lane = self._lane(item.queue_key)
        lane.queue.enqueue(item)
        self._schedule_pump(lane)
        return item.future

    async def run(
        self,
        definition: TaskDefinition,
        params: Any = None,
        options: Optional[TaskOptions] = None,
        **overrides: Any,
    ) -> Any:
        """enqueue_task() and await the result."""
        return await self.enqueue_task(definition, params, options, **overrides)

    # ── Control ───────────────────────────────────────────────────────────────

    def set_concurrency(self, limit: int, queue_key: Optional[str] = None) -> None:
        """
        Change a concurrency limit at runtime.

        Without queue_key, changes the default limit for every lane that has
        no explicit override. In-flight executions keep their slots.
        """
        validate_limit(limit)
        if queue_key is None:
            self._concurrency = limit
            targets = [lane for key, lane in self._lanes.items() if key not in self._queue_limits]
        else:
            self._queue_limits[queue_key] = limit
            targets = [self._lanes[queue_key]] if queue_key in self._lanes else []
        for lane in targets:
            lane.gate.set_limit(limit)
        self._log.info("runner.concurrency_changed", queue=queue_key, limit=limit)

    def abort_all(self, reason: Any = "runner aborted") -> int:
        """Fire the runner-owned signal of every outstanding item."""
        outstanding = list(self._items)
        for item in outstanding:
            item.controller.abort(reason)
        if outstanding:
            self._log.info("runner.abort_all", items=len(outstanding), reason=str(reason))
        return len(outstanding)

    async def shutdown(self, reason: Any = "runner shutdown", wait: bool = True) -> None:
        """Refuse new submissions, abort outstanding items, wait for in-flight runs."""
        self._closed = True
        self._log.info("runner.stopping", outstanding=len(self._items), executing=len(self._executions))
        # pending items settle in dispatch order, before running ones see the signal
        for lane in self._lanes.values():
            for item in lane.queue.drain():
                item.controller.abort(reason)
        self.abort_all(reason)
        if wait and self._executions:
            await asyncio.gather(*list(self._executions), return_exceptions=True)
        self._log.info("runner.stopped")

    @property
    def closed(self) -> bool:
        return self._closed

    # ── Introspection ─────────────────────────────────────────────────────────

    def queue_keys(self) -> list[str]:
        return list(self._lanes)

    def running_count(self, queue_key: str = "main") -> int:
        lane = self._lanes.get(queue_key)
        return lane.gate.running if lane else 0

    def pending_count(self, queue_key: str = "main") -> int:
        lane = self._lanes.get(queue_key)
        return len(lane.queue) if lane else 0

    def limit_for(self, queue_key: str) -> int:
        return self._queue_limits.get(queue_key, self._concurrency)

    def snapshot(self) -> dict[str, dict[str, int]]:
        return {
            key: {
                "pending": len(lane.queue),
                "running": lane.gate.running,
                "limit": lane.gate.limit,
            }
            for key, lane in self._lanes.items()
        }

    # ── Pump ──────────────────────────────────────────────────────────────────

    def _lane(self, key: str) -> _Lane:
        lane = self._lanes.get(key)
        if lane is None:
            lane = _Lane(key, self.limit_for(key), self)
            self._lanes[key] = lane
            self._log.debug("runner.lane_created", queue=key, limit=lane.gate.limit)
        return lane

    def _schedule_pump(self, lane: _Lane) -> None:
        """
        Pump on the next loop iteration. Every submission made in the same
        synchronous burst is queued before any of them is admitted.
        """
        if lane.pump_scheduled:
            return
        lane.pump_scheduled = True
        asyncio.get_running_loop().call_soon(self._scheduled_pump, lane)

    def _scheduled_pump(self, lane: _Lane) -> None:
        lane.pump_scheduled = False
        self._pump(lane)

    def _pump(self, lane: _Lane) -> None:
        """Dequeue-and-admit until the lane is empty or its gate is saturated."""
        while not lane.gate.saturated:
            item = lane.queue.dequeue()
            if item is None:
                return
            if self._abandoned(item):
                self._settle_aborted(item, reason=self._abandon_reason(item))
                continue
            lane.gate.try_admit()
            item.state = ItemState.RUNNING
            item.attempt += 1
            call_id = uuid.uuid4().hex[:12]
            execution = asyncio.create_task(
                self._run_item(lane, item, call_id),
                name=f"taskgate:{item.name}:{call_id}",
            )
            self._executions.add(execution)
            execution.add_done_callback(self._executions.discard)

    # ── Execution ─────────────────────────────────────────────────────────────

    async def _run_item(self, lane: _Lane, item: QueuedItem, call_id: str) -> None:
        """One execution attempt. Holds exactly one gate slot, released once."""
        ctx = TaskContext.build(
            call_id=call_id,
            abort_signal=item.signal,
            task_name=item.name,
            queue_key=lane.key,
            attempt=item.attempt,
            hook=item.options.debug,
            emit=self._call_hook,
        )
        try:
            # cancelled between admission and the first step of this task
            if self._abandoned(item):
                self._settle_aborted(item, reason=self._abandon_reason(item))
                return
            with bind_call(call_id, item.name, queue=lane.key, attempt=item.attempt):
                self._emit(item, "admit", {
                    "call_id": call_id,
                    "attempt": item.attempt,
                    "running": lane.gate.running,
                })
                try:
                    result = await item.definition.run(item.params, ctx)
                except asyncio.CancelledError:
                    self._settle_aborted(item, reason="execution cancelled")
                    raise
                except Exception as e:
                    self._on_failure(item, e, call_id)
                except BaseException as e:
                    self._on_fatal(item, e, call_id)
                    if isinstance(e, (KeyboardInterrupt, SystemExit)):
                        raise
                else:
                    self._on_success(item, result, call_id)
        finally:
            lane.gate.release()

    def _on_success(self, item: QueuedItem, result: Any, call_id: str) -> None:
        if item.signal.aborted:
            self._settle_aborted(item)
            return
        if item.state.terminal:
            return
        item.state = ItemState.SUCCEEDED
        self.stats.succeeded += 1
        self._finish(item)
        if not item.future.done():
            item.future.set_result(result)
        self._emit(item, "succeeded", {"call_id": call_id, "attempt": item.attempt})

    def _on_failure(self, item: QueuedItem, error: Exception, call_id: str) -> None:
        if isinstance(error, TaskAborted) or item.signal.aborted:
            self._settle_aborted(item, cause=error)
            return
        if item.state.terminal:
            return

        error_text = f"{type(error).__name__}: {error}"
        if item.retries_left > 0:
            item.retries_left -= 1
            self.stats.retried += 1
            delay = self._backoff.delay_for_attempt(item.attempt)
            self._emit(item, "retry", {
                "call_id": call_id,
                "attempt": item.attempt,
                "retries_left": item.retries_left,
                "delay_s": round(delay, 3),
                "error": error_text,
            }, level="warning")
            if delay > 0:
                item.state = ItemState.RETRYING
                loop = asyncio.get_running_loop()
                item.retry_handle = loop.call_later(delay, self._requeue, item)
            else:
                self._requeue(item)
            return

        item.state = ItemState.FAILED
        self.stats.failed += 1
        self._finish(item)
        if not item.future.done():
            item.future.set_exception(error)
        self._emit(item, "failed", {
            "call_id": call_id,
            "attempt": item.attempt,
            "error": error_text,
        }, level="warning")

    def _on_fatal(self, item: QueuedItem, error: BaseException, call_id: str) -> None:
        """Non-Exception raised by the body: fail the item, never retry."""
        if item.state.terminal:
            return
        item.state = ItemState.FAILED
        self.stats.failed += 1
        self._finish(item)
        if not item.future.done():
            item.future.set_exception(error)
        self._emit(item, "failed", {
            "call_id": call_id,
            "attempt": item.attempt,
            "error": f"{type(error).__name__}: {error}",
            "fatal": True,
        }, level="error")

    def _requeue(self, item: QueuedItem) -> None:
        item.retry_handle = None
        if item.state.terminal:
            return
        if item.signal.aborted:
            self._settle_aborted(item)
            return
        item.sequence = next(self._sequence)
        item.state = ItemState.PENDING
        lane = self._lane(item.queue_key)
        lane.queue.enqueue(item)
        self._schedule_pump(lane)

    # ── Abort handling ────────────────────────────────────────────────────────

    def _on_abort(self, item: QueuedItem) -> None:
        """Signal listener. Not-running items are rejected right away."""
        if item.state is ItemState.PENDING:
            self._lanes[item.queue_key].queue.discard(item)
            self._settle_aborted(item)
        elif item.state is ItemState.RETRYING:
            self._settle_aborted(item)
        elif item.state is ItemState.RUNNING:
            self._log.debug("runner.abort_requested", task=item.name, reason=str(item.signal.reason))

    @staticmethod
    def _abandoned(item: QueuedItem) -> bool:
        # future.cancel() reaches the controller one loop iteration late
        return item.signal.aborted or item.future.cancelled()

    @staticmethod
    def _abandon_reason(item: QueuedItem) -> Any:
        return item.signal.reason if item.signal.aborted else "future cancelled"

    def _on_future_done(self, item: QueuedItem, fut: asyncio.Future) -> None:
        if fut.cancelled() and not item.state.terminal:
            item.controller.abort("future cancelled")

    def _settle_aborted(
        self,
        item: QueuedItem,
        cause: Optional[BaseException] = None,
        reason: Any = None,
    ) -> None:
        if item.state.terminal:
            return
        item.state = ItemState.ABORTED
        self.stats.aborted += 1
        self._finish(item)

        if isinstance(cause, TaskAborted):
            error = cause
        else:
            error = TaskAborted(
                reason if reason is not None else item.signal.reason,
                task_name=item.name,
            )
            error.__cause__ = cause
        if not item.future.done():
            item.future.set_exception(error)
        self._emit(item, "aborted", {"attempt": item.attempt, "reason": str(error.reason)}, level="info")

    def _finish(self, item: QueuedItem) -> None:
        """Drop every reference the runner and the signals hold on a settled item."""
        self._items.discard(item)
        if item.retry_handle is not None:
            item.retry_handle.cancel()
            item.retry_handle = None
        if item.unsubscribe is not None:
            item.unsubscribe()
            item.unsubscribe = None
        item.signal.detach()

    # ── Diagnostics ───────────────────────────────────────────────────────────

    def _emit(
        self,
        item: QueuedItem,
        phase: str,
        data: dict[str, Any],
        level: str = "debug",
    ) -> None:
        getattr(self._log, level)(f"runner.{phase}", task=item.name, **data)
        if item.options.debug is not None:
            self._call_hook(item.options.debug, item.name, [phase], data)

    def _call_hook(
        self,
        hook: DebugHook,
        task_name: str,
        message_parts: list[str],
        data: dict[str, Any],
    ) -> None:
        try:
            hook(task_name, message_parts, data)
        except Exception as e:
            self._log.warning(
                "runner.debug_hook_error",
                task=task_name,
                error=f"{type(e).__name__}: {e}",
                exc_info=True,
            )
