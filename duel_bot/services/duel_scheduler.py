"""
Per-guild timer registry.

At most one timer is armed per guild: either the end of a voting window or
the end of a cooldown. Timers are plain asyncio tasks and do not survive a
restart; the lifecycle re-derives them from persisted rows.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Dict, Optional, Set

from duel_bot.utils.clock import utcnow
from duel_bot.utils.logger import setup_logger

logger = setup_logger(__name__)

TimerCallback = Callable[[int], Awaitable[None]]


class TimerKind:
    VOTING = "voting"
    COOLDOWN = "cooldown"


@dataclass
class ScheduledTimer:
    kind: str
    fire_at: datetime
    task: asyncio.Task


class DuelScheduler:
    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self.clock = clock
        self._timers: Dict[int, ScheduledTimer] = {}
        self._running: Set[asyncio.Task] = set()
        self.logger = logger

    def arm(self, guild_id: int, kind: str, fire_at: datetime, callback: TimerCallback) -> ScheduledTimer:
        """Arm a timer for a guild, replacing whatever was armed before"""
        self.cancel(guild_id)

        delay = max(0.0, (fire_at - self.clock()).total_seconds())
        task = asyncio.create_task(self._run(guild_id, delay, callback), name=f"duel-{kind}-{guild_id}")
        timer = ScheduledTimer(kind=kind, fire_at=fire_at, task=task)
        self._timers[guild_id] = timer
        self.logger.debug(f"Armed {kind} timer for guild {guild_id} in {delay:.0f}s")
        return timer

    async def _run(self, guild_id: int, delay: float, callback: TimerCallback):
        await asyncio.sleep(delay)

        # Unregister before the callback runs so it can re-arm and so a later
        # cancel() never interrupts a resolution in progress
        current = asyncio.current_task()
        timer = self._timers.get(guild_id)
        if timer and timer.task is current:
            del self._timers[guild_id]
        self._running.add(current)
        try:
            await callback(guild_id)
        except Exception as e:
            self.logger.error(f"Timer callback failed for guild {guild_id}: {e}", exc_info=True)
        finally:
            self._running.discard(current)

    def cancel(self, guild_id: int) -> bool:
        """Cancel a pending timer. Returns True if one was armed."""
        timer = self._timers.pop(guild_id, None)
        if timer is None:
            return False
        timer.task.cancel()
        self.logger.debug(f"Cancelled {timer.kind} timer for guild {guild_id}")
        return True

    def is_armed(self, guild_id: int, kind: Optional[str] = None) -> bool:
        timer = self._timers.get(guild_id)
        if timer is None:
            return False
        return kind is None or timer.kind == kind

    def get(self, guild_id: int) -> Optional[ScheduledTimer]:
        return self._timers.get(guild_id)

    async def shutdown(self):
        """Cancel every pending timer and wait for callbacks already running"""
        for guild_id in list(self._timers):
            self.cancel(guild_id)
        if self._running:
            await asyncio.gather(*self._running, return_exceptions=True)
