"""
Optional Redis helpers.

Redis is only used when REDIS_URL is set. It provides a cross-process lock
around duel resolution and a cache of live vote tallies. Without a client
both helpers degrade to no-ops and the database stays the single source of
truth.
"""

import logging
import uuid
from contextlib import asynccontextmanager
from typing import Dict, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from duel_bot.config import Config
from duel_bot.constants import CacheConstants

logger = logging.getLogger(__name__)


class RedisUtils:
    """Redis connection setup with the security checks production needs."""

    @staticmethod
    def validate_redis_url(redis_url: str) -> bool:
        """Production requires TLS (rediss://) and credentials; development allows anything."""
        if not redis_url:
            return False

        if Config.DEBUG:
            if not redis_url.startswith(('redis://localhost', 'redis://127.0.0.1', 'rediss://')):
                logger.warning(f"Potentially insecure Redis URL in development: {redis_url}")
            return True

        if not redis_url.startswith('rediss://'):
            logger.error("Production Redis must use rediss:// (TLS) protocol")
            return False
        if '@' not in redis_url:
            logger.error("Production Redis must include authentication credentials")
            return False
        return True

    @staticmethod
    async def create_redis_client(redis_url: Optional[str] = None) -> Optional[redis.Redis]:
        """Connect and ping. Returns None when Redis is not configured or unreachable."""
        redis_url = redis_url if redis_url is not None else Config.REDIS_URL
        if not redis_url:
            logger.info("REDIS_URL not set, running without Redis")
            return None
        if not RedisUtils.validate_redis_url(redis_url):
            return None

        try:
            client = redis.from_url(redis_url, decode_responses=True)
            await client.ping()
            logger.info("Successfully connected to Redis")
            return client
        except (RedisError, OSError) as e:
            logger.error(f"Failed to connect to Redis: {e}")
            return None


class ResolutionLock:
    """SET NX EX lock per guild so only one process resolves a guild's duel at a time."""

    # Compare-and-delete so a lock is only released by its owner
    _RELEASE_SCRIPT = (
        "if redis.call('get', KEYS[1]) == ARGV[1] then "
        "return redis.call('del', KEYS[1]) else return 0 end"
    )

    def __init__(self, client: Optional[redis.Redis], ttl: int = CacheConstants.RESOLUTION_LOCK_TTL):
        self.client = client
        self.ttl = ttl

    @staticmethod
    def _key(guild_id: int) -> str:
        return f"duel:{guild_id}:resolve_lock"

    @asynccontextmanager
    async def hold(self, guild_id: int):
        """
        Yield True if the lock was acquired (or Redis is not in use), False if
        another process holds it.
        """
        if not self.client:
            yield True
            return

        token = uuid.uuid4().hex
        key = self._key(guild_id)
        try:
            acquired = bool(await self.client.set(key, token, nx=True, ex=self.ttl))
        except RedisError as e:
            # The database compare-and-swap still prevents double resolution
            logger.warning(f"Resolution lock unavailable for guild {guild_id}: {e}")
            acquired = None

        if acquired is None:
            yield True
            return

        try:
            yield acquired
        finally:
            if acquired:
                try:
                    await self.client.eval(self._RELEASE_SCRIPT, 1, key, token)
                except RedisError as e:
                    logger.warning(f"Failed to release resolution lock for guild {guild_id}: {e}")


class TallyCache:
    """Live vote counts per duel, refreshed from the ledger after every vote."""

    def __init__(self, client: Optional[redis.Redis], ttl: int = CacheConstants.TALLY_CACHE_TTL):
        self.client = client
        self.ttl = ttl

    @staticmethod
    def _key(duel_id: int) -> str:
        return f"duel:{duel_id}:votes"

    async def store(self, duel_id: int, tally: Dict[int, int]):
        if not self.client:
            return
        key = self._key(duel_id)
        try:
            async with self.client.pipeline(transaction=True) as pipe:
                pipe.delete(key)
                if tally:
                    pipe.hset(key, mapping={str(image_id): count for image_id, count in tally.items()})
                    pipe.expire(key, self.ttl)
                await pipe.execute()
        except RedisError as e:
            logger.warning(f"Failed to cache tally for duel {duel_id}: {e}")

    async def fetch(self, duel_id: int) -> Optional[Dict[int, int]]:
        """Cached tally or None on a miss (callers then read the ledger)"""
        if not self.client:
            return None
        try:
            raw = await self.client.hgetall(self._key(duel_id))
        except RedisError as e:
            logger.warning(f"Failed to read cached tally for duel {duel_id}: {e}")
            return None
        if not raw:
            return None
        return {int(image_id): int(count) for image_id, count in raw.items()}

    async def clear(self, duel_id: int):
        if not self.client:
            return
        try:
            await self.client.delete(self._key(duel_id))
        except RedisError as e:
            logger.warning(f"Failed to clear cached tally for duel {duel_id}: {e}")
