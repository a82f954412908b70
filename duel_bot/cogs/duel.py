"""
Duel Cog - duel control commands and status.

Thin adapter over DuelLifecycleManager: every command forwards to one
lifecycle operation and reports DuelError denials back to the admin.
"""

from datetime import timezone

import discord
from discord import app_commands
from discord.ext import commands

from duel_bot.services.duel_lifecycle import DuelState
from duel_bot.utils.embeds import error_embed, success_embed
from duel_bot.utils.exceptions import DuelError
from duel_bot.utils.logger import setup_logger
from duel_bot.utils.permissions import is_duel_admin

logger = setup_logger(__name__)

STATE_TEXT = {
    DuelState.IDLE: "⏹️ Stopped",
    DuelState.VOTING: "🗳️ Voting open",
    DuelState.COOLDOWN: "⏳ Waiting for the next duel",
    DuelState.PAUSED: "⏸️ Paused",
}


class DuelCog(commands.Cog):
    """Start, stop, skip, pause and resume the duel cycle"""

    def __init__(self, bot):
        self.bot = bot
        self.lifecycle = bot.duel_lifecycle
        self.logger = logger

    async def _deny(self, interaction: discord.Interaction, error: DuelError):
        self.logger.info(f"{interaction.command.name if interaction.command else 'duel'} refused "
                         f"for guild {interaction.guild_id}: {error}")
        if interaction.response.is_done():
            await interaction.followup.send(embed=error_embed(error.user_message), ephemeral=True)
        else:
            await interaction.response.send_message(embed=error_embed(error.user_message), ephemeral=True)

    @app_commands.command(name="duel-start", description="Start a duel now and enable the duel cycle")
    @app_commands.guild_only()
    @app_commands.check(is_duel_admin)
    async def duel_start(self, interaction: discord.Interaction):
        await interaction.response.defer(ephemeral=True)
        try:
            opening = await self.lifecycle.start_duel(interaction.guild_id, admin_id=interaction.user.id)
        except DuelError as e:
            await self._deny(interaction, e)
            return

        if opening is None:
            await interaction.followup.send(
                embed=error_embed("❌ Not enough active images for a duel! Import at least two. "
                                  "The cycle is on and will start once there are enough."),
                ephemeral=True
            )
            return
        await interaction.followup.send(
            embed=success_embed(f"⚔️ Duel #{opening.duel_id} started: image #{opening.image1.id} "
                                f"vs #{opening.image2.id}"),
            ephemeral=True
        )

    @app_commands.command(name="duel-stop", description="Stop the duel cycle, resolving the current duel")
    @app_commands.guild_only()
    @app_commands.check(is_duel_admin)
    async def duel_stop(self, interaction: discord.Interaction):
        await interaction.response.defer(ephemeral=True)
        try:
            result = await self.lifecycle.stop_duel(interaction.guild_id, admin_id=interaction.user.id)
        except DuelError as e:
            await self._deny(interaction, e)
            return

        message = "⏹️ Duel cycle stopped."
        if result is not None:
            message += f" Duel #{result.duel_id} was resolved with the votes it had."
        await interaction.followup.send(embed=success_embed(message), ephemeral=True)

    @app_commands.command(name="duel-skip", description="End the current duel now and start the next one")
    @app_commands.guild_only()
    @app_commands.check(is_duel_admin)
    async def duel_skip(self, interaction: discord.Interaction):
        await interaction.response.defer(ephemeral=True)
        try:
            result, opening = await self.lifecycle.skip_duel(interaction.guild_id, admin_id=interaction.user.id)
        except DuelError as e:
            await self._deny(interaction, e)
            return

        lines = []
        if result is not None:
            lines.append(f"⏭️ Duel #{result.duel_id} resolved.")
        if opening is not None:
            lines.append(f"⚔️ Duel #{opening.duel_id} started.")
        else:
            lines.append("No new duel could be started right now.")
        await interaction.followup.send(embed=success_embed("\n".join(lines)), ephemeral=True)

    @app_commands.command(name="duel-pause", description="Freeze the duel cycle without ending the current duel")
    @app_commands.guild_only()
    @app_commands.check(is_duel_admin)
    async def duel_pause(self, interaction: discord.Interaction):
        try:
            await self.lifecycle.pause_duel(interaction.guild_id, admin_id=interaction.user.id)
        except DuelError as e:
            await self._deny(interaction, e)
            return
        await interaction.response.send_message(embed=success_embed("⏸️ Duels paused."), ephemeral=True)

    @app_commands.command(name="duel-resume", description="Resume a paused duel cycle")
    @app_commands.guild_only()
    @app_commands.check(is_duel_admin)
    async def duel_resume(self, interaction: discord.Interaction):
        await interaction.response.defer(ephemeral=True)
        try:
            state = await self.lifecycle.resume_duel(interaction.guild_id, admin_id=interaction.user.id)
        except DuelError as e:
            await self._deny(interaction, e)
            return
        await interaction.followup.send(
            embed=success_embed(f"▶️ Duels resumed. Now: {STATE_TEXT[state]}"), ephemeral=True
        )

    @app_commands.command(name="duel-status", description="Show the current duel and live vote counts")
    @app_commands.guild_only()
    async def duel_status(self, interaction: discord.Interaction):
        state = await self.lifecycle.get_state(interaction.guild_id)
        embed = discord.Embed(title="⚔️ Duel Status", description=STATE_TEXT[state], color=discord.Color.blurple())

        active = await self.lifecycle.get_active_duel(interaction.guild_id)
        if active is not None:
            tally = await self.lifecycle.get_tally(interaction.guild_id) or {}
            embed.add_field(name="Duel", value=f"#{active.duel_id}", inline=True)
            embed.add_field(
                name="Votes",
                value=f"#{active.image1_id}: {tally.get(active.image1_id, 0)} · "
                      f"#{active.image2_id}: {tally.get(active.image2_id, 0)}",
                inline=True
            )
            embed.add_field(
                name="Ends",
                value=discord.utils.format_dt(active.ends_at.replace(tzinfo=timezone.utc), style="R"),
                inline=True
            )
        await interaction.response.send_message(embed=embed, ephemeral=True)


async def setup(bot):
    await bot.add_cog(DuelCog(bot))
