from datetime import datetime
from typing import Optional, List, Dict
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy import select, update, delete, func, or_
from contextlib import asynccontextmanager

from duel_bot.config import Config
from duel_bot.database.models import (
    Base, GuildConfig, Image, Duel, ActiveDuel, Vote
)
from duel_bot.utils.logger import setup_logger

class Database:
    def __init__(self, database_url: Optional[str] = None):
        self.logger = setup_logger(__name__)
        self.database_url = database_url or Config.DATABASE_URL
        self.engine = None
        self.async_session = None

    async def initialize(self):
        """Initialize the database connection and create tables"""
        self.logger.info("Initializing database...")

        # Convert sqlite URL to async if needed
        database_url = self.database_url
        if database_url.startswith('sqlite:///'):
            database_url = database_url.replace('sqlite:///', 'sqlite+aiosqlite:///')

        self.engine = create_async_engine(
            database_url,
            echo=Config.DEBUG,
            future=True
        )

        self.async_session = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        self.logger.info("Database initialized successfully")

    @property
    def session_factory(self):
        return self.async_session

    @asynccontextmanager
    async def get_session(self):
        """Get a database session"""
        async with self.async_session() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    @asynccontextmanager
    async def transaction(self):
        """
        Create a transaction boundary for atomic operations.

        All operations within the context are committed together on success,
        or rolled back together on failure. Exceptions must be allowed to
        propagate out of the context for rollback to occur.
        """
        async with self.async_session() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    async def close(self):
        """Close the database connection"""
        if self.engine:
            await self.engine.dispose()
            self.logger.info("Database connection closed")

    # Image operations
    async def create_image(self, guild_id: int, uploader_id: int, storage_key: str,
                           elo: int = None) -> Image:
        """Create a new competing image"""
        async with self.get_session() as session:
            image = Image(
                guild_id=guild_id,
                uploader_id=uploader_id,
                storage_key=storage_key,
                elo=elo if elo is not None else Config.STARTING_ELO
            )
            session.add(image)
            await session.commit()
            await session.refresh(image)
            return image

    async def get_image(self, guild_id: int, image_id: int) -> Optional[Image]:
        """Get an image by id, scoped to its guild"""
        async with self.get_session() as session:
            result = await session.execute(
                select(Image).where(Image.guild_id == guild_id, Image.id == image_id)
            )
            return result.scalar_one_or_none()

    async def get_image_by_storage_key(self, storage_key: str) -> Optional[Image]:
        async with self.get_session() as session:
            result = await session.execute(
                select(Image).where(Image.storage_key == storage_key)
            )
            return result.scalar_one_or_none()

    async def get_images(self, guild_id: int, include_retired: bool = True,
                         limit: int = None, offset: int = 0) -> List[Image]:
        """Get images for a guild, newest first"""
        async with self.get_session() as session:
            query = select(Image).where(Image.guild_id == guild_id)
            if not include_retired:
                query = query.where(Image.retired == False)  # noqa: E712
            query = query.order_by(Image.imported_at.desc(), Image.id.desc()).offset(offset)
            if limit:
                query = query.limit(limit)
            result = await session.execute(query)
            return list(result.scalars().all())

    async def get_image_stats(self, guild_id: int) -> Dict[str, int]:
        """Count total, active and retired images for a guild"""
        async with self.get_session() as session:
            total = await session.scalar(
                select(func.count(Image.id)).where(Image.guild_id == guild_id)
            )
            retired = await session.scalar(
                select(func.count(Image.id)).where(
                    Image.guild_id == guild_id, Image.retired == True  # noqa: E712
                )
            )
            return {'total': total or 0, 'active': (total or 0) - (retired or 0), 'retired': retired or 0}

    async def delete_image(self, guild_id: int, image_id: int) -> Optional[Image]:
        """
        Physically delete an image with its vote and duel history.

        Returns the deleted image (detached) so the caller can remove the
        storage object, or None if it did not exist.
        """
        async with self.transaction() as session:
            result = await session.execute(
                select(Image).where(Image.guild_id == guild_id, Image.id == image_id)
            )
            image = result.scalar_one_or_none()
            if not image:
                return None

            duel_ids = select(Duel.id).where(
                or_(Duel.image1_id == image_id, Duel.image2_id == image_id)
            )
            await session.execute(delete(Vote).where(
                or_(Vote.image_id == image_id, Vote.duel_id.in_(duel_ids))
            ))
            await session.execute(delete(ActiveDuel).where(ActiveDuel.duel_id.in_(duel_ids)))
            await session.execute(delete(Duel).where(
                or_(Duel.image1_id == image_id, Duel.image2_id == image_id)
            ))
            await session.delete(image)
            self.logger.info(f"Deleted image {image_id} from guild {guild_id}")
            return image

    async def reset_guild(self, guild_id: int) -> List[str]:
        """
        Delete every image, duel, vote and active duel of a guild and stop the
        cycle. Configuration settings are kept. Returns the storage keys of the
        deleted images.
        """
        async with self.transaction() as session:
            result = await session.execute(
                select(Image.storage_key).where(Image.guild_id == guild_id)
            )
            storage_keys = [row[0] for row in result.all()]

            guild_duels = select(Duel.id).where(Duel.guild_id == guild_id)
            await session.execute(delete(Vote).where(Vote.duel_id.in_(guild_duels)))
            await session.execute(delete(ActiveDuel).where(ActiveDuel.guild_id == guild_id))
            await session.execute(delete(Duel).where(Duel.guild_id == guild_id))
            await session.execute(delete(Image).where(Image.guild_id == guild_id))
            await session.execute(
                update(GuildConfig)
                .where(GuildConfig.guild_id == guild_id)
                .values(duel_active=False, duel_paused=False)
            )
            self.logger.info(f"Reset guild {guild_id}: removed {len(storage_keys)} images")
            return storage_keys


    # Duel operations
    async def get_active_duel(self, guild_id: int) -> Optional[ActiveDuel]:
        """The guild's open voting window, if any"""
        async with self.get_session() as session:
            return await session.get(ActiveDuel, guild_id)

    async def get_duel(self, duel_id: int) -> Optional[Duel]:
        async with self.get_session() as session:
            return await session.get(Duel, duel_id)

    async def get_last_duel_end(self, guild_id: int) -> Optional[datetime]:
        """End time of the guild's most recently concluded duel"""
        async with self.get_session() as session:
            return await session.scalar(
                select(func.max(Duel.ended_at)).where(Duel.guild_id == guild_id)
            )

    async def set_active_duel_message(self, guild_id: int, duel_id: int, message_id: int) -> bool:
        async with self.transaction() as session:
            result = await session.execute(
                update(ActiveDuel)
                .where(ActiveDuel.guild_id == guild_id, ActiveDuel.duel_id == duel_id)
                .values(message_id=message_id)
            )
            return result.rowcount == 1
