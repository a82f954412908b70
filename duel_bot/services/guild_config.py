"""
Guild configuration service.

Every read goes to the database so the lifecycle always sees the latest
admin change. Updates are validated field by field and audited.
"""

import json
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select

from duel_bot.database.models import AuditAction, AuditLog, GuildConfig, RatingMode
from duel_bot.services.base import BaseService
from duel_bot.utils.exceptions import ConfigValidationError

logger = logging.getLogger(__name__)


def _positive_int(field: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ConfigValidationError(field, f"{field} must be a positive whole number")
    return value


def _non_negative_int(field: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ConfigValidationError(field, f"{field} must be zero or a positive whole number")
    return value


def _fraction(field: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not 0 <= value <= 1:
        raise ConfigValidationError(field, f"{field} must be between 0 and 1")
    return float(value)


def _bonus(field: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not 0 <= value <= 5:
        raise ConfigValidationError(field, f"{field} must be between 0 and 5")
    return float(value)


def _flag(field: str, value: Any) -> bool:
    if not isinstance(value, bool):
        raise ConfigValidationError(field, f"{field} must be true or false")
    return value


def _rating_mode(field: str, value: Any) -> str:
    if value not in RatingMode.ALL:
        raise ConfigValidationError(field, f"{field} must be one of: {', '.join(RatingMode.ALL)}")
    return value


def _channel(field: str, value: Any) -> Optional[int]:
    if value is None:
        return None
    return _positive_int(field, value)


# Admin-settable fields and their validators
EDITABLE_FIELDS = {
    'duel_channel_id': _channel,
    'image_channel_id': _channel,
    'log_channel_id': _channel,
    'duel_duration': _positive_int,
    'duel_interval': _positive_int,
    'starting_elo': _positive_int,
    'k_factor': _positive_int,
    'rating_mode': _rating_mode,
    'streak_bonus_2': _bonus,
    'streak_bonus_3': _bonus,
    'upset_bonus': _bonus,
    'min_votes': _non_negative_int,
    'wildcard_chance': _fraction,
    'balanced_matchmaking': _flag,
    'smart_retirement': _flag,
    'retire_after_losses': _non_negative_int,
    'retire_below_elo': _non_negative_int,
}


class GuildConfigService(BaseService):
    """Reads and updates per-guild duel configuration."""

    async def get(self, guild_id: int) -> Optional[GuildConfig]:
        async with self.get_session() as session:
            return await session.get(GuildConfig, guild_id)

    async def get_or_create(self, guild_id: int) -> GuildConfig:
        """Return the guild's configuration, creating it with defaults if missing."""
        async with self.get_session() as session:
            config = await session.get(GuildConfig, guild_id)
            if config is None:
                config = GuildConfig(guild_id=guild_id)
                session.add(config)
                await session.flush()
                await session.refresh(config)
                logger.info(f"Created default configuration for guild {guild_id}")
            return config

    async def update(self, guild_id: int, admin_id: Optional[int] = None, **fields) -> GuildConfig:
        """
        Validate and apply configuration changes with an audit entry.

        Args:
            guild_id: Guild to update
            admin_id: Discord ID of the admin making the change
            **fields: Field names from EDITABLE_FIELDS and their new values

        Raises:
            ConfigValidationError: unknown field or invalid value (nothing is written)
        """
        validated = {}
        for field, value in fields.items():
            validator = EDITABLE_FIELDS.get(field)
            if validator is None:
                raise ConfigValidationError(field, f"{field} is not a configurable setting")
            validated[field] = validator(field, value)

        async with self.get_session() as session:
            config = await session.get(GuildConfig, guild_id)
            if config is None:
                config = GuildConfig(guild_id=guild_id)
                session.add(config)
                await session.flush()

            changes: Dict[str, Dict[str, Any]] = {}
            for field, value in validated.items():
                old_value = getattr(config, field)
                if old_value != value:
                    setattr(config, field, value)
                    changes[field] = {'old': old_value, 'new': value}

            if changes:
                session.add(AuditLog(
                    guild_id=guild_id,
                    action_type=AuditAction.CONFIG_SET,
                    admin_id=admin_id,
                    details=json.dumps(changes)
                ))
                logger.info(f"Guild {guild_id} configuration updated by {admin_id}: {sorted(changes)}")

            await session.flush()
            await session.refresh(config)
            return config

    async def set_cycle_flags(self, guild_id: int, active: Optional[bool] = None,
                              paused: Optional[bool] = None) -> None:
        """Lifecycle-owned flags. Not audited here; the lifecycle logs its own control actions."""
        async with self.get_session() as session:
            config = await session.get(GuildConfig, guild_id)
            if config is None:
                return
            if active is not None:
                config.duel_active = active
            if paused is not None:
                config.duel_paused = paused

    async def list_configured_guilds(self) -> List[GuildConfig]:
        """Configurations that have a duel channel set"""
        async with self.get_session() as session:
            result = await session.execute(
                select(GuildConfig).where(GuildConfig.duel_channel_id.isnot(None))
            )
            return list(result.scalars().all())
