"""Tests for the periodic sweep."""

import asyncio

import pytest

from core.sweep import SweepScheduler
from tests.conftest import FakeChatItem


def make_sweep(source, interval=0.05):
    candidates = []
    anchors = []
    sweep = SweepScheduler(
        source,
        candidates.append,
        lambda: anchors.append(True),
        interval_seconds=interval,
    )
    return sweep, candidates, anchors


@pytest.mark.asyncio
async def test_tick_reports_rendered_items_without_affordance(source):
    fresh = FakeChatItem("fresh")
    done = FakeChatItem("done")
    done.affordance = True
    hidden = FakeChatItem("hidden", top=0)
    source.add(fresh, done, hidden)

    sweep, candidates, _ = make_sweep(source)

    assert await sweep.tick() == 1
    assert [item.item_id for item in candidates] == ["fresh"]


@pytest.mark.asyncio
async def test_anchor_requested_once(source):
    sweep, _, anchors = make_sweep(source)

    await sweep.tick()
    assert anchors == []

    source.anchor_host = True
    await sweep.tick()
    await sweep.tick()

    assert anchors == [True]
    assert sweep.anchor_requested


@pytest.mark.asyncio
async def test_run_ticks_until_stopped(source):
    source.add(FakeChatItem("a"))
    sweep, candidates, _ = make_sweep(source, interval=0.05)
    stop = asyncio.Event()

    task = asyncio.create_task(sweep.run(stop))
    await asyncio.sleep(0.18)
    stop.set()
    await asyncio.wait_for(task, timeout=1)

    # The item never gets an affordance here, so every tick reports it
    assert len(candidates) >= 2


@pytest.mark.asyncio
async def test_run_survives_tick_failure(source):
    calls = []

    async def flaky():
        calls.append(True)
        if len(calls) == 1:
            raise RuntimeError("frame detached")
        return []

    source.query_pending_items = flaky
    sweep, _, _ = make_sweep(source)
    stop = asyncio.Event()

    task = asyncio.create_task(sweep.run(stop))
    await asyncio.sleep(0.18)
    stop.set()
    await asyncio.wait_for(task, timeout=1)

    assert len(calls) >= 2


def test_interval_floor(source):
    sweep, _, _ = make_sweep(source, interval=0.001)
    assert sweep.interval_seconds == 0.05
