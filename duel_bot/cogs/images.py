"""
Images Cog - importing submissions and admin image management.

Images posted as attachments in a guild's image channel are imported
automatically; the storage key points back at the source message so the
picture can be re-fetched (and deleted) later.
"""

import discord
from discord import app_commands
from discord.ext import commands

from duel_bot.operations.retirement_policy import RetirementPolicy
from duel_bot.services.guild_config import GuildConfigService
from duel_bot.ui.duel_presenter import AttachmentStorage
from duel_bot.ui.views import ConfirmationView
from duel_bot.utils.embeds import error_embed, success_embed
from duel_bot.utils.exceptions import DuelError
from duel_bot.utils.logger import setup_logger
from duel_bot.utils.permissions import is_duel_admin

logger = setup_logger(__name__)


class ImagesCog(commands.Cog):
    """Image import and retirement management"""

    def __init__(self, bot):
        self.bot = bot
        self.config_service = GuildConfigService(bot.db.session_factory)
        self.retirement = RetirementPolicy(bot.db)
        self.logger = logger

    @commands.Cog.listener()
    async def on_message(self, message: discord.Message):
        if message.author.bot or message.guild is None or not message.attachments:
            return

        config = await self.config_service.get(message.guild.id)
        if config is None or config.image_channel_id != message.channel.id:
            return

        imported = 0
        for attachment in message.attachments:
            if not (attachment.content_type or '').startswith('image/'):
                continue
            image = await self.bot.image_ops.import_image(
                message.guild.id, message.author.id, AttachmentStorage.make_key(message, attachment)
            )
            if image is not None:
                imported += 1

        if imported:
            try:
                await message.add_reaction("✅")
            except discord.HTTPException as e:
                self.logger.debug(f"Could not react to message {message.id}: {e}")

    async def _reply(self, interaction: discord.Interaction, embed: discord.Embed):
        if interaction.response.is_done():
            await interaction.followup.send(embed=embed, ephemeral=True)
        else:
            await interaction.response.send_message(embed=embed, ephemeral=True)

    @app_commands.command(name="image-retire", description="Retire an image from future duels")
    @app_commands.describe(image_id="ID of the image to retire")
    @app_commands.guild_only()
    @app_commands.check(is_duel_admin)
    async def image_retire(self, interaction: discord.Interaction, image_id: int):
        image = await self.retirement.set_retired(
            interaction.guild_id, image_id, True, admin_id=interaction.user.id
        )
        if image is None:
            await self._reply(interaction, error_embed(f"❌ Image #{image_id} not found!"))
            return
        await self.bot.leaderboard_service.invalidate(interaction.guild_id)
        await self._reply(interaction, success_embed(f"🪦 Image #{image_id} retired."))

    @app_commands.command(name="image-unretire", description="Return a retired image to the duel pool")
    @app_commands.describe(image_id="ID of the image to bring back")
    @app_commands.guild_only()
    @app_commands.check(is_duel_admin)
    async def image_unretire(self, interaction: discord.Interaction, image_id: int):
        image = await self.retirement.set_retired(
            interaction.guild_id, image_id, False, admin_id=interaction.user.id
        )
        if image is None:
            await self._reply(interaction, error_embed(f"❌ Image #{image_id} not found!"))
            return
        await self.bot.leaderboard_service.invalidate(interaction.guild_id)
        await self._reply(interaction, success_embed(f"♻️ Image #{image_id} is back in the pool."))

    @app_commands.command(name="image-bulk-retire", description="Retire every active image below a rating")
    @app_commands.describe(rating="Images rated below this are retired")
    @app_commands.guild_only()
    @app_commands.check(is_duel_admin)
    async def image_bulk_retire(self, interaction: discord.Interaction, rating: int):
        retired = await self.retirement.bulk_retire_below(
            interaction.guild_id, rating, admin_id=interaction.user.id
        )
        if retired:
            await self.bot.leaderboard_service.invalidate(interaction.guild_id)
        await self._reply(interaction, success_embed(f"🪦 Retired {len(retired)} images rated below {rating}."))

    @app_commands.command(name="image-bulk-unretire",
                          description="Bring back every retired image at or above a rating")
    @app_commands.describe(rating="Retired images rated at least this are restored")
    @app_commands.guild_only()
    @app_commands.check(is_duel_admin)
    async def image_bulk_unretire(self, interaction: discord.Interaction, rating: int):
        restored = await self.retirement.bulk_unretire_above(
            interaction.guild_id, rating, admin_id=interaction.user.id
        )
        if restored:
            await self.bot.leaderboard_service.invalidate(interaction.guild_id)
        await self._reply(interaction, success_embed(f"♻️ Restored {len(restored)} images rated {rating}+."))

    @app_commands.command(name="image-delete", description="Permanently delete an image and its history")
    @app_commands.describe(image_id="ID of the image to delete")
    @app_commands.guild_only()
    @app_commands.check(is_duel_admin)
    async def image_delete(self, interaction: discord.Interaction, image_id: int):
        active = await self.bot.duel_lifecycle.get_active_duel(interaction.guild_id)
        if active is not None and image_id in (active.image1_id, active.image2_id):
            await self._reply(interaction, error_embed(
                f"❌ Image #{image_id} is in the current duel. Skip or stop the duel first."
            ))
            return

        view = ConfirmationView(interaction.user.id, "Delete Image")
        await interaction.response.send_message(
            embed=discord.Embed(
                title="⚠️ Delete Image",
                description=f"Image #{image_id} and all of its duels and votes will be deleted.",
                color=discord.Color.red()
            ),
            view=view,
            ephemeral=True
        )
        await view.wait()
        if not view.confirmed:
            return

        try:
            await self.bot.image_ops.delete_image(interaction.guild_id, image_id, admin_id=interaction.user.id)
        except DuelError as e:
            await self._reply(interaction, error_embed(e.user_message))
            return
        await self._reply(interaction, success_embed(f"🗑️ Image #{image_id} deleted."))

    @app_commands.command(name="image-stats", description="Show how many images are in the pool")
    @app_commands.guild_only()
    async def image_stats(self, interaction: discord.Interaction):
        stats = await self.bot.db.get_image_stats(interaction.guild_id)
        embed = discord.Embed(title="🖼️ Image Pool", color=discord.Color.blurple())
        embed.add_field(name="Total", value=str(stats['total']), inline=True)
        embed.add_field(name="Active", value=str(stats['active']), inline=True)
        embed.add_field(name="Retired", value=str(stats['retired']), inline=True)
        await interaction.response.send_message(embed=embed, ephemeral=True)


async def setup(bot):
    await bot.add_cog(ImagesCog(bot))
