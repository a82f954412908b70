"""
Leaderboard service

Top active images per guild with a small TTL cache. The resolver and the
image operations invalidate a guild's entries whenever ratings or the pool
change, so the cache never outlives a mutation.
"""

import asyncio
import logging
import time
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select, func

from duel_bot.constants import CacheConstants, PaginationConstants
from duel_bot.database.models import Image
from duel_bot.services.base import BaseService

logger = logging.getLogger(__name__)


class LeaderboardService(BaseService):
    """Service for leaderboard queries with caching."""

    def __init__(self, session_factory, cache_ttl: int = CacheConstants.LEADERBOARD_CACHE_TTL):
        super().__init__(session_factory)
        self._cache: Dict[Tuple[int, int], List[Image]] = {}
        self._cache_timestamps: Dict[Tuple[int, int], float] = {}
        self._cache_ttl = cache_ttl
        self._cache_lock = asyncio.Lock()

    async def _get_cached(self, key: Tuple[int, int]) -> Optional[List[Image]]:
        async with self._cache_lock:
            timestamp = self._cache_timestamps.get(key)
            if timestamp is None or time.time() - timestamp >= self._cache_ttl:
                return None
            return self._cache.get(key)

    async def _set_cached(self, key: Tuple[int, int], value: List[Image]):
        async with self._cache_lock:
            self._cache[key] = value
            self._cache_timestamps[key] = time.time()

    async def invalidate(self, guild_id: int):
        """Drop every cached page for a guild"""
        async with self._cache_lock:
            stale = [key for key in self._cache if key[0] == guild_id]
            for key in stale:
                self._cache.pop(key, None)
                self._cache_timestamps.pop(key, None)
        if stale:
            logger.debug(f"Invalidated {len(stale)} leaderboard cache entries for guild {guild_id}")

    async def get_top_images(self, guild_id: int,
                             limit: int = PaginationConstants.LEADERBOARD_SIZE) -> List[Image]:
        """Active images ordered by rating, then wins, then age"""
        key = (guild_id, limit)
        cached = await self._get_cached(key)
        if cached is not None:
            return cached

        async def fetch_top_images():
            async with self.get_session() as session:
                result = await session.execute(
                    select(Image)
                    .where(Image.guild_id == guild_id, Image.retired == False)  # noqa: E712
                    .order_by(Image.elo.desc(), Image.wins.desc(), Image.id)
                    .limit(limit)
                )
                return list(result.scalars().all())

        # Resolutions write to the same SQLite file
        images = await self.execute_with_retry(fetch_top_images)
        await self._set_cached(key, images)
        return images

    async def get_rank(self, guild_id: int, image: Image) -> Optional[int]:
        """1-based rank among active images, None for retired images"""
        if image.retired:
            return None
        async with self.get_session() as session:
            higher = await session.scalar(
                select(func.count(Image.id)).where(
                    Image.guild_id == guild_id,
                    Image.retired == False,  # noqa: E712
                    Image.elo > image.elo
                )
            )
            return (higher or 0) + 1
