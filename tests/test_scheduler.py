"""Tests for the per-bot reconnect scheduler."""

from __future__ import annotations

import asyncio

import pytest

from botfleet.scheduler import ReconnectScheduler


class _Recorder:
    def __init__(self) -> None:
        self.fired = 0

    async def __call__(self) -> None:
        self.fired += 1


class TestReconnectScheduler:
    @pytest.mark.asyncio
    async def test_fires_after_delay(self) -> None:
        on_fire = _Recorder()
        scheduler = ReconnectScheduler("b1", on_fire)

        scheduler.schedule(0.01)
        assert scheduler.armed
        assert scheduler.delay == 0.01

        await asyncio.sleep(0.05)
        assert on_fire.fired == 1
        assert not scheduler.armed
        assert scheduler.due_in() is None

    @pytest.mark.asyncio
    async def test_cancel_prevents_fire(self) -> None:
        on_fire = _Recorder()
        scheduler = ReconnectScheduler("b1", on_fire)

        scheduler.schedule(0.01)
        scheduler.cancel()
        await asyncio.sleep(0.05)

        assert on_fire.fired == 0
        assert not scheduler.armed
        assert scheduler.delay is None

    @pytest.mark.asyncio
    async def test_reschedule_replaces_pending(self) -> None:
        on_fire = _Recorder()
        scheduler = ReconnectScheduler("b1", on_fire)

        scheduler.schedule(0.01)
        scheduler.schedule(0.02)
        await asyncio.sleep(0.08)

        assert on_fire.fired == 1

    @pytest.mark.asyncio
    async def test_due_in(self) -> None:
        scheduler = ReconnectScheduler("b1", _Recorder())
        assert scheduler.due_in() is None

        scheduler.schedule(30)
        assert 29 < scheduler.due_in() <= 30
        scheduler.cancel()

    @pytest.mark.asyncio
    async def test_callback_may_rearm(self) -> None:
        scheduler: ReconnectScheduler
        fired: list[int] = []

        async def on_fire() -> None:
            fired.append(1)
            if len(fired) < 2:
                scheduler.schedule(0.01)

        scheduler = ReconnectScheduler("b1", on_fire)
        scheduler.schedule(0.01)
        await asyncio.sleep(0.1)

        assert len(fired) == 2
        assert not scheduler.armed
