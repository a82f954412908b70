import discord

from duel_bot.config import Config


def is_duel_admin(interaction: discord.Interaction) -> bool:
    """Bot owner, or a member who can manage the server"""
    if interaction.user.id == Config.OWNER_DISCORD_ID:
        return True
    permissions = getattr(interaction.user, 'guild_permissions', None)
    return bool(permissions and (permissions.administrator or permissions.manage_guild))
