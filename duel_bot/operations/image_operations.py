"""
Image Operations Module

Admin-facing image lifecycle: import, physical deletion (with the storage
object), season soft reset and full system reset. Every action leaves an
audit log entry.
"""

import json
from typing import Optional, List

from sqlalchemy import select

from duel_bot.config import Config
from duel_bot.database.models import AuditAction, AuditLog, GuildConfig, Image
from duel_bot.utils.elo import EloCalculator
from duel_bot.utils.exceptions import CollaboratorUnavailableError, ImageNotFoundError
from duel_bot.utils.logger import setup_logger

logger = setup_logger(__name__)


class ImageOperations:
    def __init__(self, database, storage=None, leaderboard_service=None):
        """
        Args:
            database: Database instance
            storage: ImageStorage collaborator used to remove storage objects
            leaderboard_service: Optional cache to invalidate after changes
        """
        self.db = database
        self.storage = storage
        self.leaderboard_service = leaderboard_service
        self.logger = logger

    async def _log(self, guild_id: int, action: str, admin_id: Optional[int], details: dict):
        async with self.db.transaction() as session:
            session.add(AuditLog(
                guild_id=guild_id,
                action_type=action,
                admin_id=admin_id,
                details=json.dumps(details)
            ))

    async def _invalidate(self, guild_id: int):
        if self.leaderboard_service:
            await self.leaderboard_service.invalidate(guild_id)

    async def _remove_storage_objects(self, storage_keys: List[str]) -> int:
        """Delete storage objects, logging failures. Returns how many failed."""
        if not self.storage:
            return 0

        failed = 0
        for key in storage_keys:
            try:
                await self.storage.delete(key)
            except CollaboratorUnavailableError as e:
                failed += 1
                self.logger.warning(f"Could not delete storage object {key}: {e}", exc_info=True)
        return failed

    async def import_image(self, guild_id: int, uploader_id: int, storage_key: str) -> Optional[Image]:
        """
        Register a new image at the guild's starting rating.

        Returns None when the storage key is already known.
        """
        if await self.db.get_image_by_storage_key(storage_key):
            self.logger.debug(f"Skipping already imported image {storage_key}")
            return None

        async with self.db.get_session() as session:
            config = await session.get(GuildConfig, guild_id)
        starting_elo = config.starting_elo if config else None

        image = await self.db.create_image(guild_id, uploader_id, storage_key, elo=starting_elo)
        await self._log(guild_id, AuditAction.IMAGE_IMPORTED, None, {
            'image_id': image.id,
            'uploader_id': uploader_id,
            'elo': image.elo,
        })
        await self._invalidate(guild_id)
        self.logger.info(f"Imported image {image.id} for guild {guild_id} from uploader {uploader_id}")
        return image

    async def delete_image(self, guild_id: int, image_id: int, admin_id: Optional[int] = None) -> Image:
        """
        Physically delete an image, its duel/vote history and its storage object.

        Raises:
            ImageNotFoundError: image does not exist in the guild
        """
        image = await self.db.delete_image(guild_id, image_id)
        if image is None:
            raise ImageNotFoundError(image_id)

        failed = await self._remove_storage_objects([image.storage_key])
        await self._log(guild_id, AuditAction.IMAGE_DELETED, admin_id, {
            'image_id': image_id,
            'elo': image.elo,
            'storage_removed': failed == 0,
        })
        await self._invalidate(guild_id)
        return image

    async def reset_season(self, guild_id: int, admin_id: Optional[int] = None) -> int:
        """
        Start a new season: soft reset every rating halfway back to the
        starting rating and clear records and streaks. Returns the new season
        number.
        """
        async with self.db.transaction() as session:
            config = await session.get(GuildConfig, guild_id)
            starting_elo = config.starting_elo if config else Config.STARTING_ELO

            result = await session.execute(select(Image).where(Image.guild_id == guild_id))
            images = list(result.scalars().all())
            for image in images:
                image.elo = EloCalculator.soft_reset(image.elo, starting_elo)
                image.wins = 0
                image.losses = 0
                image.current_streak = 0

            season_number = 1
            if config:
                config.season_number += 1
                season_number = config.season_number

            session.add(AuditLog(
                guild_id=guild_id,
                action_type=AuditAction.SEASON_RESET,
                admin_id=admin_id,
                details=json.dumps({'season_number': season_number, 'images': len(images)})
            ))

        await self._invalidate(guild_id)
        self.logger.info(f"Season reset for guild {guild_id}: now season {season_number}, "
                         f"{len(images)} images soft reset")
        return season_number

    async def reset_system(self, guild_id: int, admin_id: Optional[int] = None) -> int:
        """
        Delete every image (and storage object), duel and vote of a guild and
        stop its duel cycle. Returns the number of images removed.
        """
        storage_keys = await self.db.reset_guild(guild_id)
        failed = await self._remove_storage_objects(storage_keys)
        await self._log(guild_id, AuditAction.SYSTEM_RESET, admin_id, {
            'images_removed': len(storage_keys),
            'storage_failures': failed,
        })
        await self._invalidate(guild_id)
        return len(storage_keys)

