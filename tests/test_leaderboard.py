"""Tests for leaderboard ordering, ranks and cache invalidation."""

import pytest

from duel_bot.operations.retirement_policy import RetirementPolicy
from duel_bot.services.leaderboard import LeaderboardService

from .conftest import GUILD_ID


@pytest.fixture
def leaderboard(db):
    return LeaderboardService(db.session_factory)


class TestLeaderboardService:
    async def test_ordered_by_rating_without_retired(self, db, leaderboard, make_images):
        mid, top, bottom, gone = await make_images(4, elos=[1100, 1300, 900, 1500])
        await RetirementPolicy(db).set_retired(GUILD_ID, gone.id, True)

        images = await leaderboard.get_top_images(GUILD_ID)

        assert [image.id for image in images] == [top.id, mid.id, bottom.id]

    async def test_limit(self, leaderboard, make_images):
        await make_images(5)
        assert len(await leaderboard.get_top_images(GUILD_ID, limit=3)) == 3

    async def test_cache_until_invalidated(self, leaderboard, make_images):
        await make_images(2)
        assert len(await leaderboard.get_top_images(GUILD_ID)) == 2

        await make_images(1)
        assert len(await leaderboard.get_top_images(GUILD_ID)) == 2

        await leaderboard.invalidate(GUILD_ID)
        assert len(await leaderboard.get_top_images(GUILD_ID)) == 3

    async def test_rank(self, db, leaderboard, make_images):
        first, second, third = await make_images(3, elos=[1200, 1100, 1000])
        assert await leaderboard.get_rank(GUILD_ID, third) == 3

        retired = await RetirementPolicy(db).set_retired(GUILD_ID, first.id, True)
        assert await leaderboard.get_rank(GUILD_ID, retired) is None
        assert await leaderboard.get_rank(GUILD_ID, second) == 1
