"""
signals.py — Cooperative Cancellation

AbortSignal is a flag plus a listener list. It supports three operations:
observe the fired state, register a callback for when it fires, and
combine N signals so that any one firing fires the combination.

AbortController owns a signal and is the only thing that can fire it.
Task bodies receive a signal and are expected to poll it (``aborted`` /
``throw_if_aborted()``), register against it, or await ``wait()``.

Usage::

    controller = AbortController()
    controller.abort_after(30.0)             # external timeout
    fut = runner.enqueue_task(defn, params, abort_signal=controller.signal)
    ...
    controller.abort("user pressed stop")    # cancels if not yet finished
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Iterable, Optional

from taskgate.exceptions import TaskAborted
from taskgate.observability.logger import get_logger

log = get_logger(__name__)

Listener = Callable[["AbortSignal"], None]


class AbortSignal:
    """
    Read-only cancellation handle.

    Fires at most once. Listeners run synchronously, in registration order,
    at the moment the signal fires. A listener registered on an already
    fired signal is invoked immediately.
    """

    def __init__(self) -> None:
        self._aborted = False
        self._reason: Any = None
        self._listeners: list[Listener] = []
        # removers for listeners this signal holds on its sources (see any())
        self._unlink: list[Callable[[], None]] = []

    def __repr__(self) -> str:
        state = f"aborted reason={self._reason!r}" if self._aborted else "pending"
        return f"<AbortSignal {state}>"

    # ── Observe ───────────────────────────────────────────────────────────────

    @property
    def aborted(self) -> bool:
        return self._aborted

    @property
    def reason(self) -> Any:
        return self._reason

    def throw_if_aborted(self) -> None:
        """Raise TaskAborted if the signal has fired."""
        if self._aborted:
            raise TaskAborted(self._reason)

    async def wait(self) -> Any:
        """Suspend until the signal fires. Returns the abort reason."""
        if self._aborted:
            return self._reason
        fut: asyncio.Future = asyncio.get_running_loop().create_future()

        def _wake(signal: AbortSignal) -> None:
            if not fut.done():
                fut.set_result(signal.reason)

        remove = self.add_listener(_wake)
        try:
            return await fut
        finally:
            remove()

    # ── Register ──────────────────────────────────────────────────────────────

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Register listener; returns a callable that unregisters it."""
        if self._aborted:
            self._call(listener)
            return lambda: None
        self._listeners.append(listener)
        return lambda: self.remove_listener(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # ── Combine ───────────────────────────────────────────────────────────────

    @classmethod
    def any(cls, signals: Iterable[Optional["AbortSignal"]]) -> "AbortSignal":
        """
        Return a signal that fires as soon as any of ``signals`` fires,
        carrying that source's reason. ``None`` entries are ignored.

        Once fired (or after ``detach()``) the combined signal unregisters
        itself from the remaining sources, so long-lived sources do not
        accumulate listeners.
        """
        sources = [s for s in signals if s is not None]
        combined = cls()
        for source in sources:
            if source.aborted:
                combined._fire(source.reason)
                return combined
        for source in sources:
            combined._unlink.append(
                source.add_listener(lambda src: combined._fire(src.reason))
            )
        return combined

    def detach(self) -> None:
        """Stop following source signals (no-op for plain signals)."""
        unlink, self._unlink = self._unlink, []
        for remove in unlink:
            remove()

    # ── Factories ─────────────────────────────────────────────────────────────

    @classmethod
    def aborted_signal(cls, reason: Any = None) -> "AbortSignal":
        """Return a signal that has already fired."""
        signal = cls()
        signal._fire(reason)
        return signal

    @classmethod
    def timeout(cls, delay: float, reason: Any = "timeout") -> "AbortSignal":
        """Return a signal that fires after ``delay`` seconds. Needs a running loop."""
        controller = AbortController()
        controller.abort_after(delay, reason)
        return controller.signal

    # ── Internal ──────────────────────────────────────────────────────────────

    def _fire(self, reason: Any) -> bool:
        if self._aborted:
            return False
        self._aborted = True
        self._reason = reason
        self.detach()
        listeners, self._listeners = self._listeners, []
        for listener in listeners:
            self._call(listener)
        return True

    def _call(self, listener: Listener) -> None:
        try:
            listener(self)
        except Exception as e:
            log.error(
                "signal.listener_error",
                listener=getattr(listener, "__qualname__", repr(listener)),
                error=f"{type(e).__name__}: {e}",
                exc_info=True,
            )


class AbortController:
    """Owner side of an AbortSignal."""

    def __init__(self) -> None:
        self._signal = AbortSignal()

    @property
    def signal(self) -> AbortSignal:
        return self._signal

    def abort(self, reason: Any = None) -> bool:
        """Fire the signal. Returns False if it had already fired."""
        return self._signal._fire(reason)

    def abort_after(self, delay: float, reason: Any = "timeout") -> asyncio.TimerHandle:
        """Schedule abort() on the running loop; cancel the handle to disarm."""
        loop = asyncio.get_running_loop()
        return loop.call_later(max(0.0, float(delay)), self.abort, reason)
