"""Tests for duel resolution: skip rules, rating changes, retirement and exactly-once closing."""

import asyncio
import random

import pytest
from sqlalchemy import select

from duel_bot.database.models import ActiveDuel, AuditAction, AuditLog, Duel, Image, RatingMode, SkipReason
from duel_bot.operations.duel_resolver import DuelResolver
from duel_bot.operations.matchup_selector import MatchupSelector
from duel_bot.utils.exceptions import AlreadyResolvedError, DuelInvariantError

from .conftest import GUILD_ID


@pytest.fixture
def resolver(db, clock):
    return DuelResolver(db, clock=clock)


async def fetch(db, model, key):
    async with db.get_session() as session:
        return await session.get(model, key)


class TestSkips:
    async def test_no_votes(self, db, resolver, make_guild, make_images, open_duel):
        config = await make_guild()
        image1, image2 = await make_images(2)
        duel = await open_duel(image1, image2)

        result = await resolver.resolve(GUILD_ID, duel.id, image1.id, image2.id, config)

        assert result.skipped
        assert result.skip_reason == SkipReason.NO_VOTES
        stored = await fetch(db, Duel, duel.id)
        assert stored.ended_at is not None
        assert stored.winner_id is None
        assert stored.skip_reason == SkipReason.NO_VOTES
        assert (await fetch(db, Image, image1.id)).elo == 1000
        assert await fetch(db, ActiveDuel, GUILD_ID) is None

    async def test_tie(self, db, resolver, make_guild, make_images, open_duel, add_votes):
        config = await make_guild()
        image1, image2 = await make_images(2)
        duel = await open_duel(image1, image2)
        await add_votes(duel.id, {100: image1.id, 101: image2.id})

        result = await resolver.resolve(GUILD_ID, duel.id, image1.id, image2.id, config)

        assert result.skip_reason == SkipReason.TIE
        stored = await fetch(db, Duel, duel.id)
        assert (stored.image1_votes, stored.image2_votes) == (1, 1)
        assert (await fetch(db, Image, image1.id)).wins == 0

    async def test_uploader_only_votes_are_void(self, db, resolver, make_guild, make_images, open_duel,
                                                add_votes):
        config = await make_guild()
        image1, image2 = await make_images(2, uploaders=[1, 2])
        duel = await open_duel(image1, image2)
        await add_votes(duel.id, {1: image1.id, 2: image1.id})

        result = await resolver.resolve(GUILD_ID, duel.id, image1.id, image2.id, config)

        assert result.skip_reason == SkipReason.UPLOADER_ONLY
        assert result.image1_votes == 2
        assert (await fetch(db, Image, image1.id)).elo == 1000

    async def test_below_min_votes(self, db, resolver, make_guild, make_images, open_duel, add_votes):
        config = await make_guild(min_votes=3)
        image1, image2 = await make_images(2)
        duel = await open_duel(image1, image2)
        await add_votes(duel.id, {100: image1.id, 101: image1.id})

        result = await resolver.resolve(GUILD_ID, duel.id, image1.id, image2.id, config)
        assert result.skip_reason == SkipReason.BELOW_MIN_VOTES


class TestDecidedDuels:
    async def test_simple_mode_win(self, db, resolver, make_guild, make_images, open_duel, add_votes, clock):
        config = await make_guild(rating_mode=RatingMode.SIMPLE)
        image1, image2 = await make_images(2)
        duel = await open_duel(image1, image2)
        await add_votes(duel.id, {100: image2.id, 101: image2.id, 102: image1.id})

        result = await resolver.resolve(GUILD_ID, duel.id, image1.id, image2.id, config)

        assert not result.skipped
        assert result.winner.id == image2.id
        assert (result.winner_votes, result.loser_votes) == (2, 1)
        assert (result.winner_change, result.loser_change) == (16, -16)

        winner = await fetch(db, Image, image2.id)
        loser = await fetch(db, Image, image1.id)
        assert (winner.elo, winner.wins, winner.current_streak, winner.best_streak) == (1016, 1, 1, 1)
        assert winner.total_votes_received == 2
        assert winner.last_duel_at == clock()
        assert (loser.elo, loser.losses, loser.current_streak) == (984, 1, 0)
        assert loser.total_votes_received == 1

        stored = await fetch(db, Duel, duel.id)
        assert stored.winner_id == image2.id
        assert stored.ended_at == clock()

    async def test_bonus_mode_streak(self, db, resolver, make_guild, make_images, open_duel, add_votes):
        config = await make_guild(rating_mode=RatingMode.BONUS, streak_bonus_2=0.10, upset_bonus=0.0)
        image1, image2, image3 = await make_images(3)

        first = await open_duel(image1, image2)
        await add_votes(first.id, {100: image1.id})
        await resolver.resolve(GUILD_ID, first.id, image1.id, image2.id, config)

        second = await open_duel(image1, image3)
        await add_votes(second.id, {100: image1.id})
        result = await resolver.resolve(GUILD_ID, second.id, image1.id, image3.id, config)

        # 1016 vs 1000: base gain 15, streak of two adds 10%
        assert result.winner_change == round(15 * 1.1)
        assert (await fetch(db, Image, image1.id)).current_streak == 2

    async def test_wildcard_duel_in_bonus_mode(self, resolver, make_guild, make_images, open_duel, add_votes):
        config = await make_guild(rating_mode=RatingMode.BONUS)
        image1, image2 = await make_images(2)
        duel = await open_duel(image1, image2, is_wildcard=True)
        await add_votes(duel.id, {100: image1.id})

        result = await resolver.resolve(GUILD_ID, duel.id, image1.id, image2.id, config)

        assert result.is_wildcard
        assert (result.winner_change, result.loser_change) == (24, -24)

    async def test_audit_entry(self, db, resolver, make_guild, make_images, open_duel, add_votes):
        config = await make_guild()
        image1, image2 = await make_images(2)
        duel = await open_duel(image1, image2)
        await add_votes(duel.id, {100: image1.id})

        await resolver.resolve(GUILD_ID, duel.id, image1.id, image2.id, config)

        async with db.get_session() as session:
            entries = (await session.execute(
                select(AuditLog).where(AuditLog.action_type == AuditAction.DUEL_ENDED)
            )).scalars().all()
        assert len(entries) == 1
        assert entries[0].admin_id is None


class TestExactlyOnce:
    async def test_second_resolve_is_refused(self, db, resolver, make_guild, make_images, open_duel,
                                             add_votes):
        config = await make_guild()
        image1, image2 = await make_images(2)
        duel = await open_duel(image1, image2)
        await add_votes(duel.id, {100: image1.id})

        await resolver.resolve(GUILD_ID, duel.id, image1.id, image2.id, config)
        with pytest.raises(AlreadyResolvedError):
            await resolver.resolve(GUILD_ID, duel.id, image1.id, image2.id, config)

        winner = await fetch(db, Image, image1.id)
        assert (winner.wins, winner.elo) == (1, 1016)

    async def test_racing_resolvers_apply_once(self, db, make_guild, make_images, open_duel, add_votes, clock):
        config = await make_guild()
        image1, image2 = await make_images(2)
        duel = await open_duel(image1, image2)
        await add_votes(duel.id, {100: image1.id})

        resolvers = [DuelResolver(db, clock=clock) for _ in range(3)]
        outcomes = await asyncio.gather(
            *(r.resolve(GUILD_ID, duel.id, image1.id, image2.id, config) for r in resolvers),
            return_exceptions=True
        )

        assert sum(1 for outcome in outcomes if not isinstance(outcome, Exception)) == 1
        assert all(isinstance(outcome, AlreadyResolvedError)
                   for outcome in outcomes if isinstance(outcome, Exception))
        winner = await fetch(db, Image, image1.id)
        assert winner.wins == 1

    async def test_image_mismatch_leaves_duel_open(self, db, resolver, make_guild, make_images, open_duel):
        config = await make_guild()
        image1, image2, image3 = await make_images(3)
        duel = await open_duel(image1, image2)

        with pytest.raises(DuelInvariantError):
            await resolver.resolve(GUILD_ID, duel.id, image1.id, image3.id, config)

        assert (await fetch(db, Duel, duel.id)).ended_at is None
        assert await fetch(db, ActiveDuel, GUILD_ID) is not None

    async def test_stray_vote_leaves_duel_open(self, db, resolver, make_guild, make_images, open_duel,
                                               add_votes):
        config = await make_guild()
        image1, image2, image3 = await make_images(3)
        duel = await open_duel(image1, image2)
        await add_votes(duel.id, {100: image3.id})

        with pytest.raises(DuelInvariantError):
            await resolver.resolve(GUILD_ID, duel.id, image1.id, image2.id, config)
        assert (await fetch(db, Duel, duel.id)).ended_at is None


class TestRetirement:
    async def test_loser_retired_at_threshold(self, db, resolver, make_guild, make_images, open_duel,
                                              add_votes, clock):
        config = await make_guild(smart_retirement=False, retire_after_losses=1)
        image1, image2, image3 = await make_images(3)
        duel = await open_duel(image1, image2)
        await add_votes(duel.id, {100: image1.id})

        result = await resolver.resolve(GUILD_ID, duel.id, image1.id, image2.id, config)

        assert result.retired
        loser = await fetch(db, Image, image2.id)
        assert loser.retired
        assert loser.retired_at == clock()
        assert loser.losses == 1

        selector = MatchupSelector(db, rng=random.Random(3))
        for _ in range(5):
            matchup = await selector.select_pair(GUILD_ID)
            assert image2.id not in matchup.pair_key

    async def test_winner_never_retired(self, db, resolver, make_guild, make_images, open_duel, add_votes):
        config = await make_guild(smart_retirement=False, retire_below_elo=2000)
        image1, image2 = await make_images(2)
        duel = await open_duel(image1, image2)
        await add_votes(duel.id, {100: image1.id})

        result = await resolver.resolve(GUILD_ID, duel.id, image1.id, image2.id, config)

        assert result.retired
        assert not (await fetch(db, Image, image1.id)).retired
