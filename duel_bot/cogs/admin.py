"""
Admin Cog - guild setup, configuration, audit logs and resets.
"""

from typing import Optional

import discord
from discord import app_commands
from discord.ext import commands

from duel_bot.database.models import AuditAction
from duel_bot.services.audit_log import AuditLogService
from duel_bot.services.guild_config import EDITABLE_FIELDS, GuildConfigService
from duel_bot.ui.views import ConfirmationView
from duel_bot.utils.embeds import build_config_embed, build_logs_embed, error_embed, success_embed
from duel_bot.utils.exceptions import DuelError
from duel_bot.utils.logger import setup_logger
from duel_bot.utils.permissions import is_duel_admin
from duel_bot.utils.time_parser import parse_duration

logger = setup_logger(__name__)

DURATION_FIELDS = {'duel_duration', 'duel_interval'}
FLAG_FIELDS = {'balanced_matchmaking', 'smart_retirement'}
RATIO_FIELDS = {'streak_bonus_2', 'streak_bonus_3', 'upset_bonus', 'wildcard_chance'}
TEXT_FIELDS = {'rating_mode'}
CHANNEL_FIELDS = {'duel_channel_id', 'image_channel_id', 'log_channel_id'}

TRUE_WORDS = {'true', 'yes', 'on', '1', 'enable', 'enabled'}
FALSE_WORDS = {'false', 'no', 'off', '0', 'disable', 'disabled'}


def parse_setting(field: str, raw: str):
    """
    Turn the text an admin typed into the value type the field expects.

    Durations accept 6h / 90m / 1h30m, ratios accept 0.25 or 25%.

    Raises:
        ValueError: text can't be read as that field's type
    """
    text = raw.strip()
    if field in DURATION_FIELDS:
        return parse_duration(text)
    if field in FLAG_FIELDS:
        lowered = text.lower()
        if lowered in TRUE_WORDS:
            return True
        if lowered in FALSE_WORDS:
            return False
        raise ValueError(f"Expected on/off, got '{raw}'")
    if field in RATIO_FIELDS:
        if text.endswith('%'):
            return float(text[:-1]) / 100
        return float(text)
    if field in TEXT_FIELDS:
        return text.lower()
    return int(text)


SETTING_CHOICES = [
    app_commands.Choice(name=field, value=field)
    for field in EDITABLE_FIELDS
    if field not in CHANNEL_FIELDS
]

LOG_ACTION_CHOICES = [
    app_commands.Choice(name=value, value=value)
    for name, value in vars(AuditAction).items()
    if not name.startswith('_')
]


class AdminCog(commands.Cog):
    """Admin commands for configuring and maintaining the duel system"""

    def __init__(self, bot):
        self.bot = bot
        self.config_service = GuildConfigService(bot.db.session_factory)
        self.audit = AuditLogService(bot.db.session_factory)
        self.logger = logger

    @app_commands.command(name="duel-setup", description="Set the channels used for duels and image submissions")
    @app_commands.describe(
        duel_channel="Channel where duels are posted",
        image_channel="Channel where members post images to import",
        log_channel="Optional channel for admin notices"
    )
    @app_commands.guild_only()
    @app_commands.check(is_duel_admin)
    async def duel_setup(self, interaction: discord.Interaction,
                         duel_channel: discord.TextChannel,
                         image_channel: discord.TextChannel,
                         log_channel: Optional[discord.TextChannel] = None):
        try:
            config = await self.config_service.update(
                interaction.guild_id,
                admin_id=interaction.user.id,
                duel_channel_id=duel_channel.id,
                image_channel_id=image_channel.id,
                log_channel_id=log_channel.id if log_channel else None
            )
        except DuelError as e:
            await interaction.response.send_message(embed=error_embed(e.user_message), ephemeral=True)
            return

        self.logger.info(f"Guild {interaction.guild_id} set up by {interaction.user.id}: "
                         f"duels in {duel_channel.id}, images in {image_channel.id}")
        state = await self.bot.duel_lifecycle.get_state(interaction.guild_id)
        await interaction.response.send_message(
            content="✅ Channels saved. Use `/duel-start` to begin the duel cycle.",
            embed=build_config_embed(config, state.value),
            ephemeral=True
        )

    @app_commands.command(name="admin-config", description="Show the duel configuration")
    @app_commands.guild_only()
    @app_commands.check(is_duel_admin)
    async def admin_config(self, interaction: discord.Interaction):
        config = await self.config_service.get_or_create(interaction.guild_id)
        state = await self.bot.duel_lifecycle.get_state(interaction.guild_id)
        await interaction.response.send_message(embed=build_config_embed(config, state.value), ephemeral=True)

    @app_commands.command(name="admin-config-set", description="Change one duel setting")
    @app_commands.describe(
        setting="Setting to change",
        value="New value (durations like 6h or 90m, ratios like 0.25 or 25%, on/off for switches)"
    )
    @app_commands.choices(setting=SETTING_CHOICES)
    @app_commands.guild_only()
    @app_commands.check(is_duel_admin)
    async def admin_config_set(self, interaction: discord.Interaction,
                               setting: app_commands.Choice[str], value: str):
        try:
            parsed = parse_setting(setting.value, value)
        except ValueError as e:
            await interaction.response.send_message(embed=error_embed(f"❌ {e}"), ephemeral=True)
            return

        # Reconciling can open and post a duel
        await interaction.response.defer(ephemeral=True)
        try:
            config = await self.config_service.update(
                interaction.guild_id, admin_id=interaction.user.id, **{setting.value: parsed}
            )
        except DuelError as e:
            await interaction.followup.send(embed=error_embed(e.user_message), ephemeral=True)
            return

        # Timing changes take effect on the next reconcile; run it now
        if setting.value in DURATION_FIELDS:
            await self.bot.duel_lifecycle.reconcile_guild(interaction.guild_id)

        await interaction.followup.send(
            embed=success_embed(f"✅ `{setting.value}` is now `{getattr(config, setting.value)}`"),
            ephemeral=True
        )

    @app_commands.command(name="admin-logs", description="Browse the admin audit log")
    @app_commands.describe(page="Page number", action="Only show one kind of action")
    @app_commands.choices(action=LOG_ACTION_CHOICES)
    @app_commands.guild_only()
    @app_commands.check(is_duel_admin)
    async def admin_logs(self, interaction: discord.Interaction, page: int = 1,
                         action: Optional[app_commands.Choice[str]] = None):
        log_page = await self.audit.get_page(
            interaction.guild_id,
            action_type=action.value if action else None,
            page=page
        )
        await interaction.response.send_message(embed=build_logs_embed(log_page), ephemeral=True)

    async def _confirm(self, interaction: discord.Interaction, title: str, description: str) -> bool:
        view = ConfirmationView(interaction.user.id, title)
        embed = discord.Embed(title=f"⚠️ {title}", description=description, color=discord.Color.red())
        await interaction.response.send_message(embed=embed, view=view, ephemeral=True)
        await view.wait()
        return view.confirmed

    @app_commands.command(name="admin-season-reset",
                          description="Start a new season: ratings move halfway back to the start")
    @app_commands.guild_only()
    @app_commands.check(is_duel_admin)
    async def admin_season_reset(self, interaction: discord.Interaction):
        confirmed = await self._confirm(
            interaction, "Season Reset",
            "Every rating will move halfway back to the starting rating and all "
            "wins, losses and streaks will be cleared."
        )
        if not confirmed:
            return

        season = await self.bot.image_ops.reset_season(interaction.guild_id, admin_id=interaction.user.id)
        await interaction.followup.send(embed=success_embed(f"🏁 Season {season} has begun!"), ephemeral=True)

    @app_commands.command(name="admin-system-reset",
                          description="Delete every image, duel and vote in this server")
    @app_commands.guild_only()
    @app_commands.check(is_duel_admin)
    async def admin_system_reset(self, interaction: discord.Interaction):
        confirmed = await self._confirm(
            interaction, "System Reset",
            "This permanently deletes **all** images, duels and votes and stops the duel cycle. "
            "This cannot be undone."
        )
        if not confirmed:
            return

        await self.bot.duel_lifecycle.cancel_timers(interaction.guild_id)
        removed = await self.bot.image_ops.reset_system(interaction.guild_id, admin_id=interaction.user.id)
        self.logger.warning(f"System reset for guild {interaction.guild_id} by {interaction.user.id}: "
                            f"{removed} images removed")
        await interaction.followup.send(
            embed=success_embed(f"🧹 System reset complete. {removed} images removed."), ephemeral=True
        )


async def setup(bot):
    await bot.add_cog(AdminCog(bot))
