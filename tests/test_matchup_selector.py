"""Tests for matchup selection."""

import random

import pytest

from duel_bot.database.models import Duel
from duel_bot.operations.matchup_selector import MatchupSelector
from duel_bot.operations.retirement_policy import RetirementPolicy
from duel_bot.utils.exceptions import InsufficientPoolError

from .conftest import GUILD_ID


@pytest.fixture
def selector(db):
    return MatchupSelector(db, rng=random.Random(1234))


@pytest.fixture
def conclude(db, clock):
    """Record concluded duels so their pairs count as recent"""
    async def _conclude(*pairs):
        async with db.transaction() as session:
            for image1, image2 in pairs:
                clock.advance(minutes=1)
                session.add(Duel(guild_id=GUILD_ID, image1_id=image1.id, image2_id=image2.id,
                                 started_at=clock(), ended_at=clock()))
    return _conclude


class TestPool:
    async def test_needs_two_images(self, selector, make_images):
        await make_images(1)
        with pytest.raises(InsufficientPoolError) as excinfo:
            await selector.select_pair(GUILD_ID)
        assert excinfo.value.available == 1

    async def test_retired_images_are_excluded(self, db, selector, make_images):
        images = await make_images(3)
        await RetirementPolicy(db).set_retired(GUILD_ID, images[0].id, True)

        for _ in range(10):
            matchup = await selector.select_pair(GUILD_ID)
            assert images[0].id not in matchup.pair_key

    async def test_retiring_down_to_one_image_empties_the_pool(self, db, selector, make_images):
        images = await make_images(2)
        await RetirementPolicy(db).set_retired(GUILD_ID, images[1].id, True)
        with pytest.raises(InsufficientPoolError):
            await selector.select_pair(GUILD_ID)

    async def test_two_distinct_images(self, selector, make_images):
        await make_images(5)
        for _ in range(20):
            matchup = await selector.select_pair(GUILD_ID, wildcard_chance=0.3)
            assert matchup.image1.id != matchup.image2.id


class TestPlainMode:
    async def test_avoids_recent_pairs(self, selector, make_images, conclude):
        a, b, c = await make_images(3)
        await conclude((a, b), (a, c))

        matchup = await selector.select_pair(GUILD_ID, balanced=False)
        assert matchup.pair_key == frozenset((b.id, c.id))

    async def test_falls_back_when_every_pair_is_recent(self, selector, make_images, conclude):
        a, b = await make_images(2)
        await conclude((a, b))

        matchup = await selector.select_pair(GUILD_ID, balanced=False)
        assert matchup.pair_key == frozenset((a.id, b.id))

    async def test_never_wildcard(self, selector, make_images):
        await make_images(4)
        matchup = await selector.select_pair(GUILD_ID, wildcard_chance=1.0, balanced=False)
        assert not matchup.is_wildcard


class TestBalancedMode:
    async def test_prefers_close_ratings(self, selector, make_images):
        low, close, far = await make_images(3, elos=[1000, 1010, 1500])
        matchup = await selector.select_pair(GUILD_ID, wildcard_chance=0.0)
        assert matchup.pair_key == frozenset((low.id, close.id))
        assert not matchup.is_wildcard

    async def test_prefers_different_uploaders(self, selector, make_images):
        await make_images(3, uploaders=[1, 1, 2], elos=[1000, 1005, 1050])
        matchup = await selector.select_pair(GUILD_ID, wildcard_chance=0.0)
        assert matchup.image1.uploader_id != matchup.image2.uploader_id

    async def test_skips_recent_pairs(self, selector, make_images, conclude):
        a, b, c = await make_images(3, elos=[1000, 1001, 1090])
        await conclude((a, b))
        matchup = await selector.select_pair(GUILD_ID, wildcard_chance=0.0)
        assert matchup.pair_key != frozenset((a.id, b.id))

    async def test_wildcard_roll(self, selector, make_images):
        await make_images(4)
        matchup = await selector.select_pair(GUILD_ID, wildcard_chance=1.0)
        assert matchup.is_wildcard

    async def test_fallback_pair_is_flagged_wildcard(self, selector, make_images):
        # Same uploader: no balanced pair exists
        await make_images(2, uploaders=[9, 9])
        matchup = await selector.select_pair(GUILD_ID, wildcard_chance=0.0)
        assert matchup.is_wildcard
