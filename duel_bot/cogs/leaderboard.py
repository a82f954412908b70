import discord
from discord import app_commands
from discord.ext import commands

from duel_bot.constants import PaginationConstants
from duel_bot.services.guild_config import GuildConfigService
from duel_bot.utils.embeds import build_image_profile_embed, build_leaderboard_embed, error_embed
from duel_bot.utils.exceptions import CollaboratorUnavailableError
from duel_bot.utils.logger import setup_logger

logger = setup_logger(__name__)


class LeaderboardCog(commands.Cog):
    """Public rankings and image profiles"""

    def __init__(self, bot):
        self.bot = bot
        self.config_service = GuildConfigService(bot.db.session_factory)
        self.logger = logger

    @app_commands.command(name="leaderboard", description="Show the top rated images")
    @app_commands.describe(limit="How many images to show (max 25)")
    @app_commands.guild_only()
    async def leaderboard(self, interaction: discord.Interaction,
                          limit: app_commands.Range[int, 1, 25] = PaginationConstants.LEADERBOARD_SIZE):
        images = await self.bot.leaderboard_service.get_top_images(interaction.guild_id, limit=limit)
        config = await self.config_service.get(interaction.guild_id)
        season = config.season_number if config else 1
        embed = build_leaderboard_embed(images, interaction.guild.name, season_number=season)
        await interaction.response.send_message(embed=embed)

    @app_commands.command(name="image-profile", description="Show an image's rating and record")
    @app_commands.describe(image_id="ID of the image")
    @app_commands.guild_only()
    async def image_profile(self, interaction: discord.Interaction, image_id: int):
        image = await self.bot.db.get_image(interaction.guild_id, image_id)
        if image is None:
            await interaction.response.send_message(
                embed=error_embed(f"❌ Image #{image_id} not found!"), ephemeral=True
            )
            return

        await interaction.response.defer()
        rank = await self.bot.leaderboard_service.get_rank(interaction.guild_id, image)
        try:
            url = await self.bot.storage.get_url(image.storage_key)
        except CollaboratorUnavailableError as e:
            self.logger.warning(f"No URL for image {image.id}: {e}")
            url = None
        await interaction.followup.send(embed=build_image_profile_embed(image, rank, url))


async def setup(bot):
    await bot.add_cog(LeaderboardCog(bot))
