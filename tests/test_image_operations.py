"""Tests for image import, deletion and resets."""

import pytest
from sqlalchemy import func, select

from duel_bot.database.models import ActiveDuel, AuditAction, AuditLog, Duel, Image, Vote
from duel_bot.operations.image_operations import ImageOperations
from duel_bot.services.leaderboard import LeaderboardService
from duel_bot.utils.exceptions import ImageNotFoundError

from .conftest import GUILD_ID


@pytest.fixture
def leaderboard(db):
    return LeaderboardService(db.session_factory)


@pytest.fixture
def image_ops(db, storage, leaderboard):
    return ImageOperations(db, storage=storage, leaderboard_service=leaderboard)


async def count(db, model, *criteria):
    async with db.get_session() as session:
        return await session.scalar(select(func.count()).select_from(model).where(*criteria))


class TestImport:
    async def test_uses_guild_starting_rating(self, image_ops, make_guild):
        await make_guild(starting_elo=1200)
        image = await image_ops.import_image(GUILD_ID, 7, "1/2/3")
        assert image.elo == 1200
        assert image.uploader_id == 7
        assert not image.retired

    async def test_unconfigured_guild_gets_default_rating(self, image_ops):
        image = await image_ops.import_image(GUILD_ID, 7, "1/2/3")
        assert image.elo == 1000

    async def test_duplicate_storage_key(self, db, image_ops):
        assert await image_ops.import_image(GUILD_ID, 7, "1/2/3") is not None
        assert await image_ops.import_image(GUILD_ID, 8, "1/2/3") is None
        assert await count(db, Image) == 1

    async def test_import_invalidates_leaderboard(self, image_ops, leaderboard):
        await image_ops.import_image(GUILD_ID, 7, "1/2/3")
        assert len(await leaderboard.get_top_images(GUILD_ID)) == 1

        await image_ops.import_image(GUILD_ID, 8, "1/2/4")
        assert len(await leaderboard.get_top_images(GUILD_ID)) == 2


class TestDelete:
    async def test_removes_history_and_storage(self, db, image_ops, storage, make_images, open_duel, add_votes):
        image1, image2, image3 = await make_images(3)
        duel = await open_duel(image1, image2)
        await add_votes(duel.id, {100: image1.id})

        deleted = await image_ops.delete_image(GUILD_ID, image1.id, admin_id=9)

        assert deleted.id == image1.id
        assert storage.deleted == [image1.storage_key]
        assert await count(db, Image) == 2
        assert await count(db, Duel) == 0
        assert await count(db, Vote) == 0
        assert await count(db, ActiveDuel) == 0
        assert await count(db, AuditLog, AuditLog.action_type == AuditAction.IMAGE_DELETED) == 1

    async def test_storage_failure_still_deletes_record(self, db, image_ops, storage, make_images):
        image, _ = await make_images(2)
        storage.broken.add(image.storage_key)

        await image_ops.delete_image(GUILD_ID, image.id)

        assert await db.get_image(GUILD_ID, image.id) is None

    async def test_unknown_image(self, image_ops):
        with pytest.raises(ImageNotFoundError):
            await image_ops.delete_image(GUILD_ID, 404)


class TestResets:
    async def test_season_reset(self, db, image_ops, make_guild, make_images):
        await make_guild()
        high, low = await make_images(2, elos=[1300, 800])
        async with db.transaction() as session:
            for image in (await session.execute(select(Image))).scalars():
                image.wins, image.losses, image.current_streak, image.best_streak = 4, 2, 3, 5

        season = await image_ops.reset_season(GUILD_ID, admin_id=1)

        assert season == 2
        high = await db.get_image(GUILD_ID, high.id)
        low = await db.get_image(GUILD_ID, low.id)
        assert (high.elo, low.elo) == (1150, 900)
        assert (high.wins, high.losses, high.current_streak) == (0, 0, 0)
        assert high.best_streak == 5

    async def test_system_reset(self, db, image_ops, storage, make_guild, make_images, open_duel):
        await make_guild(duel_active=True)
        image1, image2 = await make_images(2)
        other_guild_image, = await make_images(1, guild_id=GUILD_ID + 1)
        await open_duel(image1, image2)

        removed = await image_ops.reset_system(GUILD_ID, admin_id=1)

        assert removed == 2
        assert sorted(storage.deleted) == sorted([image1.storage_key, image2.storage_key])
        assert await count(db, Image, Image.guild_id == GUILD_ID) == 0
        assert await count(db, Duel) == 0
        assert await db.get_image(GUILD_ID + 1, other_guild_image.id) is not None
