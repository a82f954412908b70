"""Tests for retirement thresholds and retire/unretire actions."""

import pytest
from sqlalchemy import select

from duel_bot.database.models import AuditAction, AuditLog, GuildConfig, Image
from duel_bot.operations.retirement_policy import (
    RetirementPolicy, RetirementThresholds, retirement_summary, should_retire, smart_threshold, thresholds_for
)

from .conftest import GUILD_ID


class TestSmartThreshold:
    @pytest.mark.parametrize("interval,expected", [
        (3600, 36),
        (21600, 6),
        (43200, 3),
        (86400, 2),
        (7 * 86400, 2),
    ])
    def test_threshold_tracks_duel_frequency(self, interval, expected):
        assert smart_threshold(interval) == expected


class TestThresholds:
    def test_smart_mode_uses_losses_only(self):
        config = GuildConfig(guild_id=1, smart_retirement=True, duel_interval=3600, retire_below_elo=900)
        assert thresholds_for(config) == RetirementThresholds(loss_threshold=36)

    def test_manual_zero_disables(self):
        config = GuildConfig(guild_id=1, smart_retirement=False, retire_after_losses=0, retire_below_elo=0)
        thresholds = thresholds_for(config)
        assert not thresholds.enabled
        assert retirement_summary(config) == "Disabled"

    def test_manual_both_conditions(self):
        config = GuildConfig(guild_id=1, smart_retirement=False, retire_after_losses=5, retire_below_elo=800)
        assert thresholds_for(config) == RetirementThresholds(loss_threshold=5, rating_floor=800)

    def test_should_retire(self):
        thresholds = RetirementThresholds(loss_threshold=3, rating_floor=800)
        assert should_retire(Image(losses=3, elo=1000, retired=False), thresholds)
        assert should_retire(Image(losses=0, elo=799, retired=False), thresholds)
        assert not should_retire(Image(losses=2, elo=800, retired=False), thresholds)
        assert not should_retire(Image(losses=9, elo=100, retired=True), thresholds)

    def test_disabled_never_retires(self):
        assert not should_retire(Image(losses=100, elo=0, retired=False), RetirementThresholds())


class TestRetirementPolicy:
    async def test_set_retired_round_trip(self, db, make_images):
        image, _ = await make_images(2)
        policy = RetirementPolicy(db)

        retired = await policy.set_retired(GUILD_ID, image.id, True, admin_id=77)
        assert retired.retired
        assert retired.retired_at is not None

        restored = await policy.set_retired(GUILD_ID, image.id, False, admin_id=77)
        assert not restored.retired
        assert restored.retired_at is None

        async with db.get_session() as session:
            actions = (await session.execute(
                select(AuditLog.action_type).where(AuditLog.guild_id == GUILD_ID).order_by(AuditLog.id)
            )).scalars().all()
        assert actions == [AuditAction.IMAGE_RETIRED, AuditAction.IMAGE_UNRETIRED]

    async def test_set_retired_unknown_image(self, db):
        assert await RetirementPolicy(db).set_retired(GUILD_ID, 999, True) is None

    async def test_set_retired_is_scoped_to_guild(self, db, make_images):
        image, _ = await make_images(2)
        assert await RetirementPolicy(db).set_retired(GUILD_ID + 1, image.id, True) is None

    async def test_bulk_retire_and_unretire(self, db, make_images):
        images = await make_images(4, elos=[700, 850, 1000, 1200])
        policy = RetirementPolicy(db)

        retired = await policy.bulk_retire_below(GUILD_ID, 900, admin_id=1)
        assert sorted(retired) == sorted([images[0].id, images[1].id])

        active = await db.get_images(GUILD_ID, include_retired=False)
        assert {image.id for image in active} == {images[2].id, images[3].id}

        restored = await policy.bulk_unretire_above(GUILD_ID, 850, admin_id=1)
        assert restored == [images[1].id]
