"""
Discord UI components for duel voting.

Vote buttons are dynamic items: their custom id carries the duel and image
ids, so buttons on messages posted before a restart keep working once the
bot registers VoteButton again.
"""

import discord

from duel_bot.constants import UIConstants
from duel_bot.operations.vote_ledger import VoteOutcome
from duel_bot.utils.exceptions import DuelError, DuplicateVoteError, InvalidTargetError
from duel_bot.utils.logger import setup_logger

logger = setup_logger(__name__)


class VoteButton(discord.ui.DynamicItem[discord.ui.Button],
                 template=UIConstants.VOTE_BUTTON_PREFIX + r':(?P<duel_id>[0-9]+):(?P<image_id>[0-9]+)'):
    def __init__(self, duel_id: int, image_id: int, label: str = "Vote"):
        super().__init__(
            discord.ui.Button(
                label=label,
                style=discord.ButtonStyle.primary,
                emoji="♡",
                custom_id=f"{UIConstants.VOTE_BUTTON_PREFIX}:{duel_id}:{image_id}"
            )
        )
        self.duel_id = duel_id
        self.image_id = image_id

    @classmethod
    async def from_custom_id(cls, interaction: discord.Interaction, item: discord.ui.Button, match, /):
        return cls(int(match['duel_id']), int(match['image_id']), label=item.label or "Vote")

    async def callback(self, interaction: discord.Interaction):
        lifecycle = getattr(interaction.client, 'duel_lifecycle', None)
        if lifecycle is None or interaction.guild_id is None:
            await interaction.response.send_message("❌ Voting isn't available right now.", ephemeral=True)
            return

        # The guild lock can be held through a resolution and its Discord posts
        await interaction.response.defer(ephemeral=True, thinking=True)
        try:
            outcome = await lifecycle.cast_vote(
                interaction.guild_id, interaction.user.id, self.image_id, duel_id=self.duel_id
            )
        except (DuplicateVoteError, InvalidTargetError) as e:
            logger.debug(f"Vote rejected for user {interaction.user.id}: {e}")
            await interaction.followup.send(e.user_message, ephemeral=True)
            return
        except DuelError as e:
            logger.info(f"Vote refused for user {interaction.user.id}: {e}")
            await interaction.followup.send(e.user_message, ephemeral=True)
            return

        if outcome is VoteOutcome.CHANGED:
            message = f"🔄 Vote changed to {self.item.label}!"
        else:
            message = f"✅ Vote recorded for {self.item.label}!"
        await interaction.followup.send(message, ephemeral=True)


class VoteView(discord.ui.View):
    """The two vote buttons of a posted duel"""

    def __init__(self, duel_id: int, image1_id: int, image2_id: int):
        super().__init__(timeout=None)
        self.add_item(VoteButton(duel_id, image1_id, label="Image A"))
        self.add_item(VoteButton(duel_id, image2_id, label="Image B"))


class ConfirmationView(discord.ui.View):
    """Two-button confirmation for destructive admin actions"""

    def __init__(self, author_id: int, action_label: str, timeout: float = 30.0):
        super().__init__(timeout=timeout)
        self.author_id = author_id
        self.action_label = action_label
        self.confirmed = False

    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        if interaction.user.id != self.author_id:
            await interaction.response.send_message(
                "❌ Only the command author can confirm this action.", ephemeral=True
            )
            return False
        return True

    def _disable_all(self):
        for child in self.children:
            child.disabled = True

    @discord.ui.button(label="Confirm", style=discord.ButtonStyle.danger, emoji="⚠️")
    async def confirm(self, interaction: discord.Interaction, button: discord.ui.Button):
        self.confirmed = True
        self._disable_all()
        self.stop()
        await interaction.response.edit_message(
            embed=discord.Embed(
                title=f"🔄 {self.action_label}...",
                color=discord.Color.orange()
            ),
            view=self
        )

    @discord.ui.button(label="Cancel", style=discord.ButtonStyle.secondary, emoji="❌")
    async def cancel(self, interaction: discord.Interaction, button: discord.ui.Button):
        self._disable_all()
        self.stop()
        await interaction.response.edit_message(
            embed=discord.Embed(title=f"{self.action_label} cancelled", color=discord.Color.light_grey()),
            view=self
        )
