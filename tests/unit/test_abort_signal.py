"""
tests/unit/test_abort_signal.py — AbortSignal / AbortController Tests

Covers:
  - Fire-once semantics and reason propagation
  - Listener registration, removal, late registration
  - A raising listener does not stop the others
  - any(): composition, pre-fired sources, detach from long-lived sources
  - throw_if_aborted(), wait(), timeout(), abort_after()
"""

from __future__ import annotations

import asyncio

import pytest

from taskgate.exceptions import TaskAborted
from taskgate.signals import AbortController, AbortSignal


# ── Fire / observe ────────────────────────────────────────────────────────────

class TestAbortController:
    def test_initial_state(self):
        controller = AbortController()
        assert not controller.signal.aborted
        assert controller.signal.reason is None

    def test_abort_sets_reason(self):
        controller = AbortController()
        assert controller.abort("stop") is True
        assert controller.signal.aborted
        assert controller.signal.reason == "stop"

    def test_second_abort_ignored(self):
        controller = AbortController()
        controller.abort("first")
        assert controller.abort("second") is False
        assert controller.signal.reason == "first"

    def test_throw_if_aborted(self):
        controller = AbortController()
        controller.signal.throw_if_aborted()
        controller.abort("halt")
        with pytest.raises(TaskAborted) as exc_info:
            controller.signal.throw_if_aborted()
        assert exc_info.value.reason == "halt"


# ── Listeners ─────────────────────────────────────────────────────────────────

class TestListeners:
    def test_listeners_called_in_order_once(self):
        controller = AbortController()
        calls = []
        controller.signal.add_listener(lambda s: calls.append(("a", s.reason)))
        controller.signal.add_listener(lambda s: calls.append(("b", s.reason)))
        controller.abort("x")
        controller.abort("y")
        assert calls == [("a", "x"), ("b", "x")]

    def test_remove_listener(self):
        controller = AbortController()
        calls = []
        remove = controller.signal.add_listener(lambda s: calls.append(1))
        remove()
        controller.abort()
        assert calls == []

    def test_late_listener_called_immediately(self):
        signal = AbortSignal.aborted_signal("already")
        calls = []
        signal.add_listener(lambda s: calls.append(s.reason))
        assert calls == ["already"]

    def test_raising_listener_isolated(self):
        controller = AbortController()
        calls = []

        def bad(_signal):
            raise RuntimeError("listener bug")

        controller.signal.add_listener(bad)
        controller.signal.add_listener(lambda s: calls.append("ok"))
        controller.abort()
        assert calls == ["ok"]


# ── any() ─────────────────────────────────────────────────────────────────────

class TestAny:
    def test_fires_when_any_source_fires(self):
        a, b = AbortController(), AbortController()
        combined = AbortSignal.any([a.signal, b.signal])
        assert not combined.aborted
        b.abort("from b")
        assert combined.aborted
        assert combined.reason == "from b"

    def test_pre_fired_source(self):
        a = AbortController()
        a.abort("early")
        combined = AbortSignal.any([AbortController().signal, a.signal])
        assert combined.aborted
        assert combined.reason == "early"

    def test_none_entries_ignored(self):
        a = AbortController()
        combined = AbortSignal.any([None, a.signal, None])
        a.abort()
        assert combined.aborted

    def test_empty_never_fires(self):
        assert not AbortSignal.any([]).aborted

    def test_detach_unregisters_from_sources(self):
        source = AbortController()
        combined = AbortSignal.any([source.signal])
        assert len(source.signal._listeners) == 1
        combined.detach()
        assert source.signal._listeners == []
        source.abort()
        assert not combined.aborted

    def test_firing_unlinks_other_sources(self):
        a, b = AbortController(), AbortController()
        AbortSignal.any([a.signal, b.signal])
        a.abort()
        assert b.signal._listeners == []


# ── Async helpers ─────────────────────────────────────────────────────────────

class TestAsync:

    @pytest.mark.asyncio
    async def test_wait_returns_reason(self):
        controller = AbortController()
        waiter = asyncio.create_task(controller.signal.wait())
        await asyncio.sleep(0)
        controller.abort("done")
        assert await waiter == "done"

    @pytest.mark.asyncio
    async def test_wait_on_fired_signal_returns_immediately(self):
        assert await AbortSignal.aborted_signal("r").wait() == "r"

    @pytest.mark.asyncio
    async def test_cancelled_wait_removes_listener(self):
        controller = AbortController()
        waiter = asyncio.create_task(controller.signal.wait())
        await asyncio.sleep(0)
        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter
        assert controller.signal._listeners == []

    @pytest.mark.asyncio
    async def test_timeout_signal(self):
        signal = AbortSignal.timeout(0.01)
        assert not signal.aborted
        assert await asyncio.wait_for(signal.wait(), timeout=1.0) == "timeout"

    @pytest.mark.asyncio
    async def test_abort_after_can_be_disarmed(self):
        controller = AbortController()
        handle = controller.abort_after(0.01, "late")
        handle.cancel()
        await asyncio.sleep(0.03)
        assert not controller.signal.aborted
