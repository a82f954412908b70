"""
Duel Resolver

Closes a voting window: tallies the ledger, decides winner/skip/void,
applies rating changes in the guild's rating mode, evaluates retirement on
the loser and records everything in a single transaction.

The transaction opens with a compare-and-swap on duels.ended_at, so a duel
can only ever be resolved once no matter how many callers race for it. A
losing caller gets AlreadyResolvedError and nothing is written.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Optional

from sqlalchemy import update, delete

from duel_bot.database.models import (
    ActiveDuel, AuditAction, AuditLog, Duel, GuildConfig, Image, RatingMode, SkipReason
)
from duel_bot.operations.retirement_policy import RetirementPolicy, should_retire, thresholds_for
from duel_bot.operations.vote_ledger import VoteLedger
from duel_bot.utils.clock import utcnow
from duel_bot.utils.elo import EloCalculator, RatingChange
from duel_bot.utils.exceptions import AlreadyResolvedError, DuelInvariantError
from duel_bot.utils.logger import setup_logger

logger = setup_logger(__name__)


@dataclass
class ResolutionResult:
    """Everything the presentation layer needs to announce a resolved duel"""
    guild_id: int
    duel_id: int
    image1_id: int
    image2_id: int
    image1_votes: int = 0
    image2_votes: int = 0
    is_wildcard: bool = False
    skipped: bool = False
    skip_reason: Optional[str] = None
    winner: Optional[Image] = None
    loser: Optional[Image] = None
    winner_change: int = 0
    loser_change: int = 0
    retired: bool = False
    tally: Dict[int, int] = field(default_factory=dict)

    @property
    def winner_votes(self) -> int:
        return self.tally.get(self.winner.id, 0) if self.winner else 0

    @property
    def loser_votes(self) -> int:
        return self.tally.get(self.loser.id, 0) if self.loser else 0

    @property
    def total_votes(self) -> int:
        return self.image1_votes + self.image2_votes


class DuelResolver:
    def __init__(self, database, leaderboard_service=None, clock: Callable[[], datetime] = utcnow):
        self.db = database
        self.clock = clock
        self.ledger = VoteLedger(database)
        self.retirement = RetirementPolicy(database)
        self.leaderboard_service = leaderboard_service
        self.logger = logger

    async def resolve(self, guild_id: int, duel_id: int, image1_id: int, image2_id: int,
                      config: GuildConfig) -> ResolutionResult:
        """
        Resolve a duel exactly once.

        Args:
            guild_id: Guild the duel belongs to
            duel_id: Duel to close
            image1_id: First image of the duel
            image2_id: Second image of the duel
            config: Fresh guild configuration (k-factor, bonuses, thresholds)

        Returns:
            ResolutionResult describing the outcome

        Raises:
            AlreadyResolvedError: the duel was already closed (nothing written)
            DuelInvariantError: persisted data is inconsistent (nothing written,
                duel stays open for an operator)
        """
        async with self.db.transaction() as session:
            now = self.clock()
            claimed = await session.execute(
                update(Duel)
                .where(Duel.id == duel_id, Duel.guild_id == guild_id, Duel.ended_at.is_(None))
                .values(ended_at=now)
            )
            if claimed.rowcount != 1:
                self.logger.debug(f"Duel {duel_id} already resolved, ignoring")
                raise AlreadyResolvedError(duel_id)

            duel = await session.get(Duel, duel_id)
            if set(duel.image_ids) != {image1_id, image2_id}:
                raise DuelInvariantError(
                    duel_id, f"expected images {duel.image_ids}, got ({image1_id}, {image2_id})"
                )

            image1 = await session.get(Image, duel.image1_id)
            image2 = await session.get(Image, duel.image2_id)
            if image1 is None or image2 is None:
                raise DuelInvariantError(duel_id, "duel references a missing image")

            tally = await self.ledger.get_tally(duel_id, session=session)
            stray = set(tally) - set(duel.image_ids)
            if stray:
                raise DuelInvariantError(duel_id, f"votes for images outside the duel: {sorted(stray)}")

            duel.image1_votes = tally.get(image1.id, 0)
            duel.image2_votes = tally.get(image2.id, 0)

            result = ResolutionResult(
                guild_id=guild_id,
                duel_id=duel_id,
                image1_id=image1.id,
                image2_id=image2.id,
                image1_votes=duel.image1_votes,
                image2_votes=duel.image2_votes,
                is_wildcard=duel.is_wildcard,
                tally=tally
            )

            skip_reason = await self._skip_reason(session, duel, image1, image2, config)
            if skip_reason:
                duel.winner_id = None
                duel.skip_reason = skip_reason
                result.skipped = True
                result.skip_reason = skip_reason
            else:
                if duel.image1_votes > duel.image2_votes:
                    winner, loser = image1, image2
                else:
                    winner, loser = image2, image1
                change = self._rating_change(winner, loser, duel.is_wildcard, config)
                self._apply(winner, loser, change, tally, now)
                duel.winner_id = winner.id

                result.winner = winner
                result.loser = loser
                result.winner_change = change.winner_change
                result.loser_change = change.loser_change

                if should_retire(loser, thresholds_for(config)):
                    result.retired = await self.retirement.retire(session, loser, 'auto', now=now)

            await session.execute(delete(ActiveDuel).where(ActiveDuel.duel_id == duel_id))

            session.add(AuditLog(
                guild_id=guild_id,
                action_type=AuditAction.DUEL_ENDED,
                details=json.dumps({
                    'duel_id': duel_id,
                    'winner_id': duel.winner_id,
                    'votes': [duel.image1_votes, duel.image2_votes],
                    'skip_reason': skip_reason,
                    'winner_change': result.winner_change,
                    'loser_change': result.loser_change,
                    'retired': result.retired,
                })
            ))

        if result.skipped:
            self.logger.info(f"Duel {duel_id} in guild {guild_id} skipped ({result.skip_reason}), "
                             f"votes {result.image1_votes}-{result.image2_votes}")
        else:
            self.logger.info(f"Duel {duel_id} in guild {guild_id} resolved: winner {result.winner.id} "
                             f"({EloCalculator.format_elo_change(result.winner_change)}), "
                             f"loser {result.loser.id} ({EloCalculator.format_elo_change(result.loser_change)})")

        if self.leaderboard_service:
            await self.leaderboard_service.invalidate(guild_id)

        return result

    async def close_without_rating(self, guild_id: int, duel_id: int,
                                   admin_id: Optional[int] = None) -> ResolutionResult:
        """
        Close a duel whose data failed the resolution checks. No ratings or
        records change; the duel ends with SkipReason.INVARIANT.

        Raises:
            AlreadyResolvedError: the duel was already closed
        """
        async with self.db.transaction() as session:
            now = self.clock()
            claimed = await session.execute(
                update(Duel)
                .where(Duel.id == duel_id, Duel.guild_id == guild_id, Duel.ended_at.is_(None))
                .values(ended_at=now, winner_id=None, skip_reason=SkipReason.INVARIANT)
            )
            if claimed.rowcount != 1:
                raise AlreadyResolvedError(duel_id)

            duel = await session.get(Duel, duel_id)
            await session.execute(delete(ActiveDuel).where(ActiveDuel.duel_id == duel_id))
            session.add(AuditLog(
                guild_id=guild_id,
                action_type=AuditAction.DUEL_ENDED,
                admin_id=admin_id,
                details=json.dumps({
                    'duel_id': duel_id,
                    'winner_id': None,
                    'skip_reason': SkipReason.INVARIANT,
                })
            ))

        self.logger.warning(f"Duel {duel_id} in guild {guild_id} closed without rating changes")
        return ResolutionResult(
            guild_id=guild_id,
            duel_id=duel_id,
            image1_id=duel.image1_id,
            image2_id=duel.image2_id,
            image1_votes=duel.image1_votes or 0,
            image2_votes=duel.image2_votes or 0,
            is_wildcard=duel.is_wildcard,
            skipped=True,
            skip_reason=SkipReason.INVARIANT
        )

    async def _skip_reason(self, session, duel: Duel, image1: Image, image2: Image,
                           config: GuildConfig) -> Optional[str]:
        total = duel.image1_votes + duel.image2_votes
        if total == 0:
            return SkipReason.NO_VOTES
        if duel.image1_votes == duel.image2_votes:
            return SkipReason.TIE

        voters = await self.ledger.get_voter_ids(duel.id, session=session)
        uploaders = {image1.uploader_id, image2.uploader_id}
        if voters and set(voters) <= uploaders:
            return SkipReason.UPLOADER_ONLY

        if total < (config.min_votes or 0):
            return SkipReason.BELOW_MIN_VOTES
        return None

    @staticmethod
    def _rating_change(winner: Image, loser: Image, is_wildcard: bool,
                       config: GuildConfig) -> RatingChange:
        if config.rating_mode == RatingMode.SIMPLE:
            return EloCalculator.calculate_duel_result(winner.elo, loser.elo, config.k_factor)

        return EloCalculator.calculate_bonus_duel_result(
            winner.elo,
            loser.elo,
            config.k_factor,
            winner_streak=winner.current_streak + 1,
            streak_bonus_2=config.streak_bonus_2,
            streak_bonus_3=config.streak_bonus_3,
            upset_bonus=config.upset_bonus,
            is_wildcard=is_wildcard
        )

    @staticmethod
    def _apply(winner: Image, loser: Image, change: RatingChange, tally: Dict[int, int], now):
        winner.elo = change.winner_new_rating
        winner.wins += 1
        winner.current_streak += 1
        winner.best_streak = max(winner.best_streak, winner.current_streak)
        winner.total_votes_received += tally.get(winner.id, 0)
        winner.last_duel_at = now

        loser.elo = change.loser_new_rating
        loser.losses += 1
        loser.current_streak = 0
        loser.total_votes_received += tally.get(loser.id, 0)
        loser.last_duel_at = now

