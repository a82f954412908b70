import asyncio
from typing import Optional

import discord
from discord import app_commands
from discord.ext import commands

from duel_bot.config import Config
from duel_bot.database.database import Database
from duel_bot.operations.image_operations import ImageOperations
from duel_bot.services.duel_lifecycle import DuelLifecycleManager
from duel_bot.services.leaderboard import LeaderboardService
from duel_bot.services.redis_cache import RedisUtils, ResolutionLock, TallyCache
from duel_bot.ui.duel_presenter import AttachmentStorage, DiscordDuelPresenter
from duel_bot.ui.views import VoteButton
from duel_bot.utils.logger import setup_logger


class DuelBot(commands.Bot):
    def __init__(self):
        intents = discord.Intents.default()
        intents.message_content = True
        intents.guilds = True

        super().__init__(
            command_prefix=Config.COMMAND_PREFIX,
            intents=intents,
            help_command=None
        )

        # Attach app command error handler
        self.tree.on_error = self.on_app_command_error

        self.db: Optional[Database] = None
        self.redis = None
        self.storage: Optional[AttachmentStorage] = None
        self.presenter: Optional[DiscordDuelPresenter] = None
        self.leaderboard_service: Optional[LeaderboardService] = None
        self.image_ops: Optional[ImageOperations] = None
        self.duel_lifecycle: Optional[DuelLifecycleManager] = None
        self.logger = setup_logger(__name__)

    async def setup_hook(self):
        """Called when the bot is starting up"""
        self.logger.info("Setting up Duel Bot...")

        self.db = Database()
        await self.db.initialize()

        # Redis is optional; without it locks and tallies stay in-process
        self.redis = await RedisUtils.create_redis_client()

        self.leaderboard_service = LeaderboardService(self.db.session_factory)
        self.storage = AttachmentStorage(self)
        self.presenter = DiscordDuelPresenter(self, self.storage)
        self.image_ops = ImageOperations(self.db, storage=self.storage,
                                         leaderboard_service=self.leaderboard_service)
        self.duel_lifecycle = DuelLifecycleManager(
            self.db,
            presenter=self.presenter,
            leaderboard_service=self.leaderboard_service,
            resolution_lock=ResolutionLock(self.redis),
            tally_cache=TallyCache(self.redis)
        )

        # Vote buttons on messages posted before a restart
        self.add_dynamic_items(VoteButton)

        await self.load_cogs()
        await self._sync_commands()

        states = await self.duel_lifecycle.recover_all()
        self.logger.info(f"Duel Bot setup complete! Recovered {len(states)} guild(s)")

    async def load_cogs(self):
        """Load all cogs"""
        cogs_to_load = [
            'duel_bot.cogs.duel',
            'duel_bot.cogs.admin',
            'duel_bot.cogs.images',
            'duel_bot.cogs.leaderboard',
            'duel_bot.cogs.housekeeping',
        ]

        for cog in cogs_to_load:
            try:
                await self.load_extension(cog)
                self.logger.info(f"Loaded cog: {cog}")
            except Exception as e:
                self.logger.error(f"Failed to load cog {cog}: {e}", exc_info=True)

    async def _sync_commands(self):
        """Sync slash commands with Discord"""
        if not self.tree.get_commands():
            self.logger.warning("No application commands found to sync. Check for cog loading errors.")
            return

        guild_ids = Config.get_guild_ids()
        if not guild_ids:
            # Global sync can take up to an hour to propagate
            try:
                synced = await self.tree.sync()
                self.logger.info(f"Synced {len(synced)} command(s) globally")
            except discord.HTTPException as e:
                self.logger.error(f"Failed to sync commands globally: {e}", exc_info=True)
            return

        for guild_id in guild_ids:
            guild = discord.Object(id=guild_id)
            try:
                self.tree.copy_global_to(guild=guild)
                synced = await self.tree.sync(guild=guild)
                self.logger.info(f"Synced {len(synced)} command(s) to guild {guild_id}")
            except discord.Forbidden:
                self.logger.error(f"Permission error syncing to guild {guild_id}. Ensure the bot has the "
                                  f"'application.commands' scope and is in the guild.", exc_info=True)
            except discord.HTTPException as e:
                self.logger.error(f"HTTP error syncing to guild {guild_id}. Status: {e.status}, "
                                  f"Response: {e.text}", exc_info=True)

    async def on_ready(self):
        self.logger.info(f'{self.user} has connected to Discord!')
        self.logger.info(f'Bot is in {len(self.guilds)} guilds')
        await self.change_presence(activity=discord.Game(name="Image Duels | /duel-status"))

    async def on_app_command_error(self, interaction: discord.Interaction, error: app_commands.AppCommandError):
        """Global error handler for slash commands"""
        command_name = interaction.command.name if interaction.command else 'Unknown'
        if isinstance(error, app_commands.CheckFailure):
            self.logger.info(f"Permission denied for command '{command_name}' by user {interaction.user}")
        else:
            self.logger.error(f"Error in app command '{command_name}': {error}", exc_info=error)

        if isinstance(error, app_commands.CommandOnCooldown):
            title = f"❌ Command is on cooldown. Try again in {error.retry_after:.2f} seconds."
            description = None
        elif isinstance(error, app_commands.NoPrivateMessage):
            title = "❌ This command only works in a server."
            description = None
        elif isinstance(error, app_commands.CheckFailure):
            title = "❌ Administrative Privileges Required"
            description = "This command needs the Manage Server permission."
        elif isinstance(error, app_commands.BotMissingPermissions):
            title = "❌ I don't have the required permissions to execute this command."
            description = None
        else:
            title = "❌ An unexpected error occurred"
            description = "Something went wrong while processing your command. It has been logged."

        embed = discord.Embed(title=title, description=description, color=discord.Color.red())
        try:
            if interaction.response.is_done():
                await interaction.followup.send(embed=embed, ephemeral=True)
            else:
                await interaction.response.send_message(embed=embed, ephemeral=True)
        except discord.HTTPException as e:
            self.logger.error(f"Failed to send error response: {e}")

    async def on_command_error(self, ctx: commands.Context, error: Exception):
        """Global error handler for prefix commands"""
        if isinstance(error, commands.CommandNotFound):
            return
        if isinstance(error, commands.CheckFailure):
            self.logger.info(f"Permission denied for command '{ctx.command}' by user {ctx.author}")
            await ctx.send("❌ You don't have permission to use this command.")
            return

        self.logger.error(f"Unexpected error in command {ctx.command}: {error}", exc_info=error)
        await ctx.send(embed=discord.Embed(
            title="❌ An error occurred",
            description="An unexpected error occurred while processing your command.",
            color=discord.Color.red()
        ))

    async def close(self):
        """Cleanup when bot is shutting down"""
        self.logger.info("Shutting down Duel Bot...")
        if self.duel_lifecycle:
            await self.duel_lifecycle.shutdown()
        if self.db:
            await self.db.close()
        if self.redis:
            await self.redis.aclose()
        await super().close()


async def main():
    """Main entry point"""
    Config.validate()

    bot = DuelBot()
    async with bot:
        await bot.start(Config.DISCORD_TOKEN)


def run():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
