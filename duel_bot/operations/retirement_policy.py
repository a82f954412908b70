"""
Retirement Policy

Decides when a losing image leaves the active pool and applies retirement
and unretirement. Retirement never deletes history; it only flips the
retired flag and stamps retired_at.

Thresholds come from the guild configuration:
- smart mode: loss threshold derived from duel frequency (about a day and a
  half of duels, minimum 2)
- manual mode: fixed loss count and/or rating floor, 0 disables each
"""

import json
import math
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from duel_bot.constants import RetirementConstants
from duel_bot.database.models import GuildConfig, Image, AuditLog, AuditAction
from duel_bot.utils.clock import utcnow
from duel_bot.utils.logger import setup_logger

logger = setup_logger(__name__)


def smart_threshold(duel_interval: int) -> int:
    """Loss count worth ~1.5 days of duels at the given interval, never below 2"""
    duels_per_day = RetirementConstants.SECONDS_PER_DAY / max(1, duel_interval)
    return max(
        RetirementConstants.SMART_MINIMUM_LOSSES,
        math.floor(duels_per_day * RetirementConstants.SMART_DAYS_MULTIPLIER)
    )


@dataclass(frozen=True)
class RetirementThresholds:
    """Active retirement limits. None means the condition is disabled."""
    loss_threshold: Optional[int] = None
    rating_floor: Optional[int] = None

    @property
    def enabled(self) -> bool:
        return self.loss_threshold is not None or self.rating_floor is not None


def thresholds_for(config: GuildConfig) -> RetirementThresholds:
    """Build the thresholds a guild's configuration asks for"""
    if config.smart_retirement:
        return RetirementThresholds(loss_threshold=smart_threshold(config.duel_interval))

    return RetirementThresholds(
        loss_threshold=config.retire_after_losses or None,
        rating_floor=config.retire_below_elo or None
    )


def should_retire(image: Image, thresholds: RetirementThresholds) -> bool:
    """True when either enabled condition is met. Already retired images are never retired again."""
    if image.retired:
        return False
    if thresholds.loss_threshold is not None and image.losses >= thresholds.loss_threshold:
        return True
    if thresholds.rating_floor is not None and image.elo < thresholds.rating_floor:
        return True
    return False


def retirement_summary(config: GuildConfig) -> str:
    """Human readable description of the guild's retirement rules"""
    if config.smart_retirement:
        threshold = smart_threshold(config.duel_interval)
        return f"Smart: retire after {threshold} losses"

    thresholds = thresholds_for(config)
    if not thresholds.enabled:
        return "Disabled"

    parts = []
    if thresholds.loss_threshold is not None:
        parts.append(f"{thresholds.loss_threshold} losses")
    if thresholds.rating_floor is not None:
        parts.append(f"Elo below {thresholds.rating_floor}")
    return "Manual: retire at " + " or ".join(parts)


class RetirementPolicy:
    """Applies retirement and unretirement with audit logging."""

    def __init__(self, database):
        self.db = database
        self.logger = logger

    @asynccontextmanager
    async def _transaction_context(self, session: Optional[AsyncSession] = None):
        if session:
            yield session
        else:
            async with self.db.transaction() as new_session:
                yield new_session

    @staticmethod
    def _audit(session: AsyncSession, guild_id: int, action: str,
               admin_id: Optional[int], details: dict):
        session.add(AuditLog(
            guild_id=guild_id,
            action_type=action,
            admin_id=admin_id,
            details=json.dumps(details)
        ))

    async def retire(self, session: AsyncSession, image: Image, reason: str,
                     admin_id: Optional[int] = None, now: Optional[datetime] = None) -> bool:
        """
        Retire an image inside the caller's transaction, stamped at `now`
        (defaults to the current time).

        Returns False if the image was already retired.
        """
        if image.retired:
            return False

        image.retired = True
        image.retired_at = now or utcnow()
        self._audit(session, image.guild_id, AuditAction.IMAGE_RETIRED, admin_id, {
            'image_id': image.id,
            'reason': reason,
            'elo': image.elo,
            'losses': image.losses,
        })
        self.logger.info(f"Retired image {image.id} in guild {image.guild_id}: {reason}")
        return True

    async def unretire(self, session: AsyncSession, image: Image,
                       admin_id: Optional[int] = None) -> bool:
        """Return an image to the active pool. Returns False if it was not retired."""
        if not image.retired:
            return False

        image.retired = False
        image.retired_at = None
        self._audit(session, image.guild_id, AuditAction.IMAGE_UNRETIRED, admin_id, {
            'image_id': image.id,
            'elo': image.elo,
        })
        self.logger.info(f"Unretired image {image.id} in guild {image.guild_id}")
        return True

    async def set_retired(self, guild_id: int, image_id: int, retired: bool,
                          admin_id: Optional[int] = None) -> Optional[Image]:
        """
        Admin retire/unretire by id in its own transaction.

        Returns the image (whether or not its state changed) or None if it
        does not exist in the guild.
        """
        async with self._transaction_context() as session:
            result = await session.execute(
                select(Image).where(Image.guild_id == guild_id, Image.id == image_id)
            )
            image = result.scalar_one_or_none()
            if not image:
                return None

            if retired:
                await self.retire(session, image, 'admin', admin_id=admin_id)
            else:
                await self.unretire(session, image, admin_id=admin_id)
            return image

    async def bulk_retire_below(self, guild_id: int, rating: int,
                                admin_id: Optional[int] = None) -> List[int]:
        """Retire every active image rated strictly below `rating`. Returns affected ids."""
        async with self._transaction_context() as session:
            result = await session.execute(
                select(Image).where(
                    Image.guild_id == guild_id,
                    Image.retired == False,  # noqa: E712
                    Image.elo < rating
                )
            )
            images = list(result.scalars().all())
            now = utcnow()
            for image in images:
                image.retired = True
                image.retired_at = now

            affected = [image.id for image in images]
            self._audit(session, guild_id, AuditAction.BULK_RETIRE, admin_id, {
                'below_elo': rating,
                'count': len(affected),
                'image_ids': affected,
            })
            self.logger.info(f"Bulk retired {len(affected)} images below {rating} in guild {guild_id}")
            return affected

    async def bulk_unretire_above(self, guild_id: int, rating: int,
                                  admin_id: Optional[int] = None) -> List[int]:
        """Unretire every retired image rated at or above `rating`. Returns affected ids."""
        async with self._transaction_context() as session:
            result = await session.execute(
                select(Image).where(
                    Image.guild_id == guild_id,
                    Image.retired == True,  # noqa: E712
                    Image.elo >= rating
                )
            )
            images = list(result.scalars().all())
            for image in images:
                image.retired = False
                image.retired_at = None

            affected = [image.id for image in images]
            self._audit(session, guild_id, AuditAction.BULK_UNRETIRE, admin_id, {
                'min_elo': rating,
                'count': len(affected),
                'image_ids': affected,
            })
            self.logger.info(f"Bulk unretired {len(affected)} images at or above {rating} in guild {guild_id}")
            return affected
