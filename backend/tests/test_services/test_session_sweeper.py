"""Expiry sweeper tests."""

import asyncio
from datetime import timedelta

import pytest

from silroad.services.session_sweeper import SessionSweeper


@pytest.mark.asyncio
async def test_run_once_deletes_expired(session_manager, user, seed_session, clock):
    """A sweep removes expired rows and reports the count."""
    await seed_session("gone", "u1", clock() - timedelta(minutes=5))
    live = await session_manager.create(user)

    sweeper = SessionSweeper(session_manager, interval_seconds=3600)
    assert await sweeper.run_once() == 1
    assert await session_manager.get_by_token(live.token) is not None


@pytest.mark.asyncio
async def test_loop_runs_periodically_and_stops(session_manager, user, seed_session, clock):
    """The background loop sweeps on its interval and stops cleanly."""
    await seed_session("gone", "u1", clock() - timedelta(minutes=5))
    removed = []
    sweep = session_manager.delete_expired

    async def recording_sweep():
        count = await sweep()
        removed.append(count)
        return count

    session_manager.delete_expired = recording_sweep
    sweeper = SessionSweeper(session_manager, interval_seconds=0.01)
    sweeper.start()
    assert sweeper.running

    for _ in range(200):
        if sum(removed) >= 1:
            break
        await asyncio.sleep(0.01)

    await sweeper.stop()
    assert not sweeper.running
    assert await session_manager.get_expired(clock()) == []


@pytest.mark.asyncio
async def test_loop_survives_failing_run(session_manager):
    """An exception in one sweep does not kill the loop."""
    calls = 0

    async def flaky():
        nonlocal calls
        calls += 1
        if calls == 1:
            raise RuntimeError("boom")
        return 0

    session_manager.delete_expired = flaky
    sweeper = SessionSweeper(session_manager, interval_seconds=0.01)
    sweeper.start()
    for _ in range(100):
        if calls >= 2:
            break
        await asyncio.sleep(0.01)
    await sweeper.stop()

    assert calls >= 2


@pytest.mark.asyncio
async def test_stop_without_start_is_noop(session_manager):
    """stop() on a sweeper that never started does nothing."""
    await SessionSweeper(session_manager, interval_seconds=1).stop()
