"""
Presentation and storage collaborators used by the duel lifecycle.

The lifecycle only depends on the two protocols below. The Discord
implementations retry transient HTTP failures (5xx, rate limits, network
errors) with backoff, never retry permission or missing-object errors, and
surface every failure as CollaboratorUnavailableError.
"""

import asyncio
from typing import Awaitable, Callable, Dict, Optional, Protocol, TypeVar

import discord

from duel_bot.database.models import ActiveDuel, GuildConfig, Image
from duel_bot.utils.embeds import build_duel_embeds, build_result_embed
from duel_bot.utils.exceptions import CollaboratorUnavailableError
from duel_bot.utils.logger import setup_logger
from duel_bot.ui.views import VoteView

logger = setup_logger(__name__)

T = TypeVar('T')


class ImageStorage(Protocol):
    async def get_url(self, storage_key: str) -> str:
        ...

    async def delete(self, storage_key: str) -> None:
        ...


class DuelPresenter(Protocol):
    async def announce_duel(self, config: GuildConfig, opening) -> Optional[int]:
        """Post a new duel; returns the posted message id"""
        ...

    async def announce_result(self, config: GuildConfig, result, message_id: Optional[int]) -> None:
        ...


async def call_discord(operation: str, func: Callable[[], Awaitable[T]],
                       max_retries: int = 3, base_delay: float = 1.0) -> T:
    """
    Run a Discord API call with retries for transient failures.

    Raises:
        CollaboratorUnavailableError: permanent failure, or transient failure
            that outlived the retries
    """
    for attempt in range(max_retries):
        try:
            return await func()
        except (discord.Forbidden, discord.NotFound) as e:
            raise CollaboratorUnavailableError(operation, str(e), transient=False) from e
        except discord.HTTPException as e:
            transient = e.status == 429 or e.status >= 500
            if not transient or attempt == max_retries - 1:
                raise CollaboratorUnavailableError(operation, str(e), transient=transient) from e
            logger.warning(f"Discord {operation} failed with {e.status}, retry {attempt + 1}/{max_retries}")
        except (OSError, asyncio.TimeoutError) as e:
            if attempt == max_retries - 1:
                raise CollaboratorUnavailableError(operation, str(e)) from e
            logger.warning(f"Network error during {operation}, retry {attempt + 1}/{max_retries}: {e}")
        await asyncio.sleep(base_delay * (2 ** attempt))


class AttachmentStorage:
    """
    Images stay where users posted them. A storage key is
    "<channel_id>/<message_id>/<attachment_id>"; URLs are looked up fresh
    because Discord attachment URLs expire.
    """

    def __init__(self, bot: discord.Client):
        self.bot = bot

    @staticmethod
    def make_key(message: discord.Message, attachment: discord.Attachment) -> str:
        return f"{message.channel.id}/{message.id}/{attachment.id}"

    @staticmethod
    def parse_key(storage_key: str):
        channel_id, message_id, attachment_id = (int(part) for part in storage_key.split('/'))
        return channel_id, message_id, attachment_id

    async def _fetch_message(self, channel_id: int, message_id: int) -> discord.Message:
        async def fetch():
            channel = self.bot.get_channel(channel_id) or await self.bot.fetch_channel(channel_id)
            return await channel.fetch_message(message_id)
        return await call_discord("fetch image message", fetch)

    async def get_url(self, storage_key: str) -> str:
        channel_id, message_id, attachment_id = self.parse_key(storage_key)
        message = await self._fetch_message(channel_id, message_id)
        for attachment in message.attachments:
            if attachment.id == attachment_id:
                return attachment.url
        raise CollaboratorUnavailableError("get image url", f"attachment {attachment_id} is gone",
                                           transient=False)

    async def delete(self, storage_key: str) -> None:
        """Delete the source message. An already deleted message counts as success."""
        channel_id, message_id, _ = self.parse_key(storage_key)
        try:
            message = await self._fetch_message(channel_id, message_id)
        except CollaboratorUnavailableError as e:
            if isinstance(e.__cause__, discord.NotFound):
                return
            raise
        await call_discord("delete image message", message.delete)


class DiscordDuelPresenter:
    def __init__(self, bot: discord.Client, storage: ImageStorage):
        self.bot = bot
        self.storage = storage
        self.logger = logger

    async def _channel(self, channel_id: int) -> discord.abc.Messageable:
        async def fetch():
            return self.bot.get_channel(channel_id) or await self.bot.fetch_channel(channel_id)
        return await call_discord("fetch duel channel", fetch)

    async def _image_url(self, image: Image) -> Optional[str]:
        try:
            return await self.storage.get_url(image.storage_key)
        except CollaboratorUnavailableError as e:
            self.logger.warning(f"No URL for image {image.id}: {e}")
            return None

    async def announce_duel(self, config: GuildConfig, opening) -> Optional[int]:
        channel = await self._channel(config.duel_channel_id)
        embeds = build_duel_embeds(
            opening.duel_id,
            opening.image1,
            opening.image2,
            await self._image_url(opening.image1),
            await self._image_url(opening.image2),
            opening.ends_at,
            is_wildcard=opening.is_wildcard
        )
        view = VoteView(opening.duel_id, opening.image1.id, opening.image2.id)
        message = await call_discord("post duel", lambda: channel.send(embeds=embeds, view=view))
        self.logger.info(f"Posted duel {opening.duel_id} as message {message.id}")
        return message.id

    async def announce_result(self, config: GuildConfig, result, message_id: Optional[int]) -> None:
        channel = await self._channel(config.duel_channel_id)

        # Clearing the old buttons is best effort; the result still gets posted
        if message_id:
            try:
                message = await call_discord("fetch duel message", lambda: channel.fetch_message(message_id))
                await call_discord("clear vote buttons", lambda: message.edit(view=None))
            except CollaboratorUnavailableError as e:
                self.logger.warning(f"Could not clear buttons on message {message_id}: {e}")

        winner_url = await self._image_url(result.winner) if result.winner else None
        embed = build_result_embed(result, winner_url)
        await call_discord("post result", lambda: channel.send(embed=embed))

    async def refresh_tally(self, config: GuildConfig, active: ActiveDuel, image1: Image, image2: Image,
                            tally: Dict[int, int], is_wildcard: bool = False) -> None:
        """Rewrite the open duel's message with current vote counts"""
        if not active.message_id:
            return
        channel = await self._channel(config.duel_channel_id)
        message = await call_discord("fetch duel message", lambda: channel.fetch_message(active.message_id))
        embeds = build_duel_embeds(
            active.duel_id, image1, image2,
            await self._image_url(image1), await self._image_url(image2),
            active.ends_at, is_wildcard=is_wildcard, tally=tally
        )
        await call_discord("refresh tally", lambda: message.edit(embeds=embeds))
