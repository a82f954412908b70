"""Tests for the per-guild timer registry."""

import asyncio
from datetime import timedelta

import pytest
import pytest_asyncio

from duel_bot.services.duel_scheduler import DuelScheduler, TimerKind


@pytest_asyncio.fixture
async def scheduler(clock):
    scheduler = DuelScheduler(clock=clock)
    yield scheduler
    await scheduler.shutdown()


class TestDuelScheduler:
    async def test_due_timer_fires_and_unregisters(self, scheduler, clock):
        fired = asyncio.Event()

        async def callback(guild_id):
            assert not scheduler.is_armed(guild_id)
            fired.set()

        scheduler.arm(1, TimerKind.VOTING, clock() - timedelta(seconds=5), callback)
        await asyncio.wait_for(fired.wait(), timeout=2)

    async def test_arming_replaces_previous_timer(self, scheduler, clock):
        async def callback(guild_id):
            pass

        first = scheduler.arm(1, TimerKind.VOTING, clock() + timedelta(hours=1), callback)
        second = scheduler.arm(1, TimerKind.COOLDOWN, clock() + timedelta(hours=2), callback)
        await asyncio.sleep(0.01)

        assert first.task.cancelled()
        assert scheduler.get(1) is second
        assert scheduler.is_armed(1, TimerKind.COOLDOWN)
        assert not scheduler.is_armed(1, TimerKind.VOTING)

    async def test_cancel(self, scheduler, clock):
        calls = []

        async def callback(guild_id):
            calls.append(guild_id)

        scheduler.arm(1, TimerKind.VOTING, clock() + timedelta(milliseconds=50), callback)
        assert scheduler.cancel(1)
        assert not scheduler.cancel(1)
        await asyncio.sleep(0.1)
        assert calls == []

    async def test_guilds_are_independent(self, scheduler, clock):
        async def callback(guild_id):
            pass

        scheduler.arm(1, TimerKind.VOTING, clock() + timedelta(hours=1), callback)
        scheduler.arm(2, TimerKind.COOLDOWN, clock() + timedelta(hours=1), callback)
        scheduler.cancel(1)

        assert not scheduler.is_armed(1)
        assert scheduler.is_armed(2, TimerKind.COOLDOWN)

    async def test_failing_callback_is_contained(self, scheduler, clock):
        done = asyncio.Event()

        async def failing(guild_id):
            raise RuntimeError("boom")

        async def succeeding(guild_id):
            done.set()

        scheduler.arm(1, TimerKind.VOTING, clock(), failing)
        scheduler.arm(2, TimerKind.VOTING, clock(), succeeding)
        await asyncio.wait_for(done.wait(), timeout=2)

    async def test_shutdown_cancels_everything(self, clock):
        scheduler = DuelScheduler(clock=clock)

        async def callback(guild_id):
            pass

        timer = scheduler.arm(1, TimerKind.VOTING, clock() + timedelta(hours=1), callback)
        await scheduler.shutdown()
        await asyncio.sleep(0.01)

        assert timer.task.cancelled()
        assert scheduler.get(1) is None
