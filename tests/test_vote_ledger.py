"""Tests for the vote ledger: one changeable vote per voter per duel."""

import pytest
from sqlalchemy import update

from duel_bot.database.models import Duel
from duel_bot.operations.vote_ledger import VoteLedger, VoteOutcome
from duel_bot.utils.exceptions import AlreadyResolvedError, DuplicateVoteError, InvalidTargetError


@pytest.fixture
def ledger(db):
    return VoteLedger(db)


class TestCastOrChangeVote:
    async def test_first_vote_is_recorded(self, ledger, make_images, open_duel):
        image1, image2 = await make_images(2)
        duel = await open_duel(image1, image2)

        outcome = await ledger.cast_or_change_vote(duel.id, 100, image1.id)

        assert outcome is VoteOutcome.RECORDED
        assert await ledger.get_vote(duel.id, 100) == image1.id
        assert await ledger.get_tally(duel.id) == {image1.id: 1}

    async def test_changing_vote_moves_it(self, ledger, make_images, open_duel):
        image1, image2 = await make_images(2)
        duel = await open_duel(image1, image2)

        await ledger.cast_or_change_vote(duel.id, 100, image1.id)
        outcome = await ledger.cast_or_change_vote(duel.id, 100, image2.id)

        assert outcome is VoteOutcome.CHANGED
        assert await ledger.get_tally(duel.id) == {image2.id: 1}
        assert await ledger.get_voter_ids(duel.id) == [100]

    async def test_same_choice_twice_is_rejected(self, ledger, make_images, open_duel):
        image1, image2 = await make_images(2)
        duel = await open_duel(image1, image2)
        await ledger.cast_or_change_vote(duel.id, 100, image1.id)

        with pytest.raises(DuplicateVoteError):
            await ledger.cast_or_change_vote(duel.id, 100, image1.id)
        assert await ledger.get_tally(duel.id) == {image1.id: 1}

    async def test_image_outside_duel(self, ledger, make_images, open_duel):
        image1, image2, outsider = await make_images(3)
        duel = await open_duel(image1, image2)

        with pytest.raises(InvalidTargetError):
            await ledger.cast_or_change_vote(duel.id, 100, outsider.id)

    async def test_unknown_duel(self, ledger, make_images):
        image1, _ = await make_images(2)
        with pytest.raises(InvalidTargetError):
            await ledger.cast_or_change_vote(12345, 100, image1.id)

    async def test_closed_duel(self, db, ledger, make_images, open_duel, clock):
        image1, image2 = await make_images(2)
        duel = await open_duel(image1, image2)
        async with db.transaction() as session:
            await session.execute(update(Duel).where(Duel.id == duel.id).values(ended_at=clock()))

        with pytest.raises(AlreadyResolvedError):
            await ledger.cast_or_change_vote(duel.id, 100, image1.id)


class TestTally:
    async def test_counts_per_image(self, ledger, make_images, open_duel):
        image1, image2 = await make_images(2)
        duel = await open_duel(image1, image2)

        for voter in (101, 102, 103):
            await ledger.cast_or_change_vote(duel.id, voter, image1.id)
        await ledger.cast_or_change_vote(duel.id, 104, image2.id)

        assert await ledger.get_tally(duel.id) == {image1.id: 3, image2.id: 1}

    async def test_empty_duel(self, ledger, make_images, open_duel):
        image1, image2 = await make_images(2)
        duel = await open_duel(image1, image2)
        assert await ledger.get_tally(duel.id) == {}
        assert await ledger.get_vote(duel.id, 100) is None
