# tests/test_scheduler.py
"""Tests for the fixed-rate dispatch scheduler"""
from __future__ import annotations

import asyncio

import pytest

from notifier.infra.metrics import get_metrics_collector
from notifier.infra.scheduler import DispatchScheduler


def test_interval_must_be_positive():
    with pytest.raises(ValueError):
        DispatchScheduler(lambda: asyncio.sleep(0), interval=0)


@pytest.mark.asyncio
async def test_ticks_repeatedly_until_stopped():
    done = asyncio.Event()
    calls = 0

    async def tick():
        nonlocal calls
        calls += 1
        if calls >= 3:
            done.set()

    scheduler = DispatchScheduler(tick, interval=0.01)
    await scheduler.start()
    assert scheduler.running

    await asyncio.wait_for(done.wait(), timeout=2.0)
    await scheduler.stop()

    assert not scheduler.running
    assert scheduler.ticks >= 3
    assert scheduler.skipped_periods == 0

    stopped_at = calls
    await asyncio.sleep(0.05)
    assert calls == stopped_at


@pytest.mark.asyncio
async def test_start_twice_keeps_single_loop():
    async def tick():
        pass

    scheduler = DispatchScheduler(tick, interval=0.01)
    await scheduler.start()
    first = scheduler._task
    await scheduler.start()

    assert scheduler._task is first
    await scheduler.stop()


@pytest.mark.asyncio
async def test_ticks_never_overlap_and_overrun_skips_periods():
    active = 0
    max_active = 0
    done = asyncio.Event()
    calls = 0

    async def slow_tick():
        nonlocal active, max_active, calls
        active += 1
        max_active = max(max_active, active)
        await asyncio.sleep(0.035)
        active -= 1
        calls += 1
        if calls >= 2:
            done.set()

    scheduler = DispatchScheduler(slow_tick, interval=0.01)
    await scheduler.start()
    await asyncio.wait_for(done.wait(), timeout=2.0)
    await scheduler.stop()

    assert max_active == 1
    assert scheduler.skipped_periods >= 2
    assert get_metrics_collector().get_metrics()["counters"]["dispatch_periods_skipped"] >= 2


@pytest.mark.asyncio
async def test_failing_tick_does_not_stop_loop():
    done = asyncio.Event()
    calls = 0

    async def flaky_tick():
        nonlocal calls
        calls += 1
        if calls == 1:
            raise RuntimeError("boom")
        done.set()

    scheduler = DispatchScheduler(flaky_tick, interval=0.01)
    await scheduler.start()
    await asyncio.wait_for(done.wait(), timeout=2.0)
    await scheduler.stop()

    assert calls >= 2
    assert get_metrics_collector().get_metrics()["counters"]["dispatch_scheduler_errors"] == 1


@pytest.mark.asyncio
async def test_initial_delay_postpones_first_tick():
    calls = 0

    async def tick():
        nonlocal calls
        calls += 1

    scheduler = DispatchScheduler(tick, interval=0.01, initial_delay=10.0)
    await scheduler.start()
    await asyncio.sleep(0.05)
    await scheduler.stop()

    assert calls == 0
