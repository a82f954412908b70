"""
Shared embed builders for the duel bot.

Keeps duel, result, leaderboard and admin displays consistent across the
presenter and the cogs.
"""

from datetime import datetime, timezone
from typing import Dict, List, Optional

import discord

from duel_bot.constants import UIConstants
from duel_bot.database.models import GuildConfig, Image, SkipReason
from duel_bot.operations.retirement_policy import retirement_summary
from duel_bot.utils.elo import EloCalculator
from duel_bot.utils.time_parser import format_duration

SKIP_REASON_TEXT = {
    SkipReason.NO_VOTES: "Nobody voted, so no ratings changed.",
    SkipReason.TIE: "It's a tie! No ratings changed.",
    SkipReason.UPLOADER_ONLY: "Only the uploaders voted, so this duel doesn't count.",
    SkipReason.BELOW_MIN_VOTES: "Not enough votes to count this duel.",
    SkipReason.INVARIANT: "This duel was closed by an admin and doesn't count.",
}


def _discord_timestamp(moment: datetime, style: str = "R") -> str:
    """Render a naive UTC datetime as a Discord timestamp tag"""
    return f"<t:{int(moment.replace(tzinfo=timezone.utc).timestamp())}:{style}>"


def build_duel_embeds(duel_id: int, image1: Image, image2: Image, image1_url: str, image2_url: str,
                      ends_at: datetime, is_wildcard: bool = False,
                      tally: Optional[Dict[int, int]] = None) -> List[discord.Embed]:
    """
    Build the announcement for an open duel: one header embed plus one embed
    per image so both pictures render at full size.
    """
    color = UIConstants.WILDCARD_COLOR if is_wildcard else UIConstants.DEFAULT_EMBED_COLOR
    title = f"{UIConstants.SWORDS_EMOJI} Duel #{duel_id}"
    if is_wildcard:
        title = f"{UIConstants.WILDCARD_EMOJI} Wildcard {title}"

    header = discord.Embed(
        title=title,
        description=(
            "Vote for your favourite! You can change your vote until the duel ends.\n"
            f"Voting closes {_discord_timestamp(ends_at)}"
        ),
        color=color
    )
    if is_wildcard:
        header.set_footer(text="Wildcard duel: rating changes are 1.5x")

    embeds = [header]
    for label, image, url in (("A", image1, image1_url), ("B", image2, image2_url)):
        embed = discord.Embed(
            title=f"Image {label} (#{image.id})",
            description=f"{EloCalculator.get_rank_emoji(image.elo)} {image.elo} Elo · {image.wins}W / {image.losses}L",
            color=color
        )
        if tally is not None:
            embed.add_field(name="Votes", value=str(tally.get(image.id, 0)), inline=True)
        embed.set_image(url=url)
        embeds.append(embed)
    return embeds


def build_result_embed(result, winner_url: Optional[str] = None) -> discord.Embed:
    """Result announcement for a resolved duel (decided or skipped)"""
    if result.skipped:
        embed = discord.Embed(
            title=f"Duel #{result.duel_id} ended without a winner",
            description=SKIP_REASON_TEXT.get(result.skip_reason, "No ratings changed."),
            color=discord.Color.light_grey()
        )
        embed.add_field(
            name="Votes",
            value=f"#{result.image1_id}: {result.image1_votes} · #{result.image2_id}: {result.image2_votes}",
            inline=False
        )
        return embed

    winner, loser = result.winner, result.loser
    embed = discord.Embed(
        title=f"{UIConstants.TROPHY_EMOJI} Image #{winner.id} wins Duel #{result.duel_id}!",
        description=f"Final votes: **{result.winner_votes}** to **{result.loser_votes}**",
        color=UIConstants.GOLD_COLOR
    )
    embed.add_field(
        name="Winner",
        value=(
            f"#{winner.id}: {winner.elo} Elo ({EloCalculator.format_elo_change(result.winner_change)})\n"
            f"Streak: {winner.current_streak}"
        ),
        inline=True
    )
    embed.add_field(
        name="Loser",
        value=f"#{loser.id}: {loser.elo} Elo ({EloCalculator.format_elo_change(result.loser_change)})",
        inline=True
    )
    if result.retired:
        embed.add_field(name="Retired", value=f"Image #{loser.id} has been retired.", inline=False)
    if result.is_wildcard:
        embed.set_footer(text="Wildcard duel: rating changes were 1.5x")
    if winner_url:
        embed.set_image(url=winner_url)
    return embed


def build_leaderboard_embed(images: List[Image], guild_name: str, season_number: int = 1) -> discord.Embed:
    embed = discord.Embed(
        title=f"{UIConstants.TROPHY_EMOJI} {guild_name} Leaderboard · Season {season_number}",
        color=UIConstants.GOLD_COLOR
    )
    if not images:
        embed.description = "No active images yet. Post some in the image channel!"
        return embed

    lines = []
    for rank, image in enumerate(images, start=1):
        lines.append(
            f"**{rank}.** {EloCalculator.get_rank_emoji(image.elo)} Image #{image.id} · "
            f"{image.elo} Elo · {image.wins}W/{image.losses}L · <@{image.uploader_id}>"
        )
    embed.description = "\n".join(lines)
    return embed


def build_image_profile_embed(image: Image, rank: Optional[int], url: Optional[str] = None) -> discord.Embed:
    embed = discord.Embed(
        title=f"Image #{image.id}",
        color=discord.Color.dark_grey() if image.retired else UIConstants.DEFAULT_EMBED_COLOR
    )
    embed.add_field(
        name="Rating",
        value=(
            f"**Elo:** {image.elo}\n"
            f"**Rank:** {EloCalculator.get_rank_emoji(image.elo)} {EloCalculator.get_rank_name(image.elo)}\n"
            f"**Position:** {f'#{rank}' if rank else 'Retired'}"
        ),
        inline=True
    )
    embed.add_field(
        name="Record",
        value=(
            f"**Wins:** {image.wins} | **Losses:** {image.losses}\n"
            f"**Win Rate:** {EloCalculator.calculate_win_rate(image.wins, image.losses):.1f}%\n"
            f"**Streak:** {image.current_streak} (best {image.best_streak})\n"
            f"**Votes received:** {image.total_votes_received}"
        ),
        inline=True
    )
    embed.add_field(name="Uploader", value=f"<@{image.uploader_id}>", inline=False)
    if url:
        embed.set_image(url=url)
    return embed


def build_config_embed(config: GuildConfig, state: str) -> discord.Embed:
    embed = discord.Embed(title="⚙️ Duel Configuration", color=UIConstants.DEFAULT_EMBED_COLOR)
    channels = (
        f"**Duels:** {f'<#{config.duel_channel_id}>' if config.duel_channel_id else 'not set'}\n"
        f"**Images:** {f'<#{config.image_channel_id}>' if config.image_channel_id else 'not set'}\n"
        f"**Logs:** {f'<#{config.log_channel_id}>' if config.log_channel_id else 'not set'}"
    )
    embed.add_field(name="Channels", value=channels, inline=False)
    embed.add_field(
        name="Cycle",
        value=(
            f"**State:** {state}\n"
            f"**Duration:** {format_duration(config.duel_duration)}\n"
            f"**Interval:** {format_duration(config.duel_interval)}\n"
            f"**Season:** {config.season_number}"
        ),
        inline=True
    )
    embed.add_field(
        name="Rating",
        value=(
            f"**Mode:** {config.rating_mode}\n"
            f"**Starting Elo:** {config.starting_elo}\n"
            f"**K-factor:** {config.k_factor}\n"
            f"**Streak bonus:** {config.streak_bonus_2:.0%} / {config.streak_bonus_3:.0%}\n"
            f"**Upset bonus:** {config.upset_bonus:.0%}\n"
            f"**Min votes:** {config.min_votes}"
        ),
        inline=True
    )
    embed.add_field(
        name="Matchmaking & Retirement",
        value=(
            f"**Balanced:** {'on' if config.balanced_matchmaking else 'off'}\n"
            f"**Wildcard chance:** {config.wildcard_chance:.0%}\n"
            f"**Retirement:** {retirement_summary(config)}"
        ),
        inline=False
    )
    return embed


def build_logs_embed(page) -> discord.Embed:
    """Admin log page; `page` is an AuditLogPage"""
    embed = discord.Embed(
        title="📜 Admin Logs",
        color=UIConstants.DEFAULT_EMBED_COLOR
    )
    if not page.entries:
        embed.description = "No log entries."
        return embed

    lines = []
    for entry in page.entries:
        details = page.details_of(entry)
        actor = f"<@{entry.admin_id}>" if entry.admin_id else "system"
        summary = ", ".join(f"{key}={value}" for key, value in details.items())
        when = _discord_timestamp(entry.created_at, "f") if entry.created_at else "?"
        lines.append(f"`{entry.action_type}` by {actor} {when}\n{summary[:200]}")
    embed.description = "\n\n".join(lines)
    embed.set_footer(text=f"Page {page.page}/{page.total_pages} · {page.total_entries} entries")
    return embed


def error_embed(message: str) -> discord.Embed:
    return discord.Embed(description=message, color=UIConstants.ERROR_COLOR)


def success_embed(message: str) -> discord.Embed:
    return discord.Embed(description=message, color=UIConstants.SUCCESS_COLOR)
