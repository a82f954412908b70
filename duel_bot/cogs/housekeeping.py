"""
Housekeeping Cog - Background Tasks

Runs the periodic reconciliation sweep that keeps every guild's duel cycle
alive even if a timer was lost, and keeps the live vote counts on open duel
messages up to date.
"""

from typing import Dict, Tuple

from discord.ext import commands, tasks

from duel_bot.config import Config
from duel_bot.utils.exceptions import CollaboratorUnavailableError
from duel_bot.utils.logger import setup_logger

logger = setup_logger(__name__)


class HousekeepingCog(commands.Cog):
    """Background reconciliation and tally refresh"""

    def __init__(self, bot):
        self.bot = bot
        self.lifecycle = bot.duel_lifecycle
        self.logger = logger
        # guild_id -> (duel_id, tally) last written to the duel message
        self._shown_tallies: Dict[int, Tuple[int, Dict[int, int]]] = {}

    @commands.Cog.listener()
    async def on_ready(self):
        """Start background tasks once the bot is connected"""
        if not self.reconcile_duels.is_running():
            self.reconcile_duels.start()
        if not self.refresh_tallies.is_running():
            self.refresh_tallies.start()
        self.logger.info("HousekeepingCog: Background tasks started")

    def cog_unload(self):
        """Stop background tasks when cog is unloaded"""
        self.reconcile_duels.cancel()
        self.refresh_tallies.cancel()
        self.logger.info("HousekeepingCog: Background tasks stopped")

    @tasks.loop(seconds=Config.RECONCILE_INTERVAL_SECONDS)
    async def reconcile_duels(self):
        """Liveness sweep: resolve overdue duels and start due ones"""
        try:
            states = await self.lifecycle.reconcile_all()
            self.logger.debug(f"Reconciled {len(states)} guild(s)")
        except Exception as e:
            self.logger.error(f"Error in reconciliation task: {e}", exc_info=True)

    @reconcile_duels.before_loop
    async def before_reconcile(self):
        await self.bot.wait_until_ready()

    @tasks.loop(seconds=Config.TALLY_REFRESH_SECONDS)
    async def refresh_tallies(self):
        """Rewrite open duel messages whose vote counts changed"""
        try:
            for config in await self.lifecycle.config_service.list_configured_guilds():
                await self._refresh_guild(config)
        except Exception as e:
            self.logger.error(f"Error in tally refresh task: {e}", exc_info=True)

    @refresh_tallies.before_loop
    async def before_refresh(self):
        await self.bot.wait_until_ready()

    async def _refresh_guild(self, config):
        guild_id = config.guild_id
        active = await self.lifecycle.get_active_duel(guild_id)
        if active is None or not active.message_id:
            self._shown_tallies.pop(guild_id, None)
            return

        tally = await self.lifecycle.get_tally(guild_id) or {}
        if self._shown_tallies.get(guild_id) == (active.duel_id, tally):
            return

        image1 = await self.bot.db.get_image(guild_id, active.image1_id)
        image2 = await self.bot.db.get_image(guild_id, active.image2_id)
        duel = await self.bot.db.get_duel(active.duel_id)
        if image1 is None or image2 is None or duel is None:
            return

        try:
            await self.bot.presenter.refresh_tally(
                config, active, image1, image2, tally, is_wildcard=duel.is_wildcard
            )
        except CollaboratorUnavailableError as e:
            self.logger.warning(f"Could not refresh tally for duel {active.duel_id}: {e}")
            return
        self._shown_tallies[guild_id] = (active.duel_id, tally)


async def setup(bot):
    await bot.add_cog(HousekeepingCog(bot))
