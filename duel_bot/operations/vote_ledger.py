"""
Vote Ledger

One current vote per voter per duel, changeable but never multipliable.
Counts are always read from the persisted votes table so they survive
restarts.
"""

from contextlib import asynccontextmanager
from enum import Enum
from typing import Dict, List, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from duel_bot.database.models import Duel, Vote
from duel_bot.utils.clock import utcnow
from duel_bot.utils.exceptions import (
    AlreadyResolvedError, DuplicateVoteError, InvalidTargetError
)
from duel_bot.utils.logger import setup_logger

logger = setup_logger(__name__)


class VoteOutcome(Enum):
    RECORDED = "recorded"
    CHANGED = "changed"


class VoteLedger:
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

    async def cast_or_change_vote(self, duel_id: int, voter_id: int, image_id: int,
                                  session: Optional[AsyncSession] = None) -> VoteOutcome:
        """
        Record a vote or move an existing one to the other image.

        Raises:
            InvalidTargetError: image is not one of the duel's two images
            DuplicateVoteError: voter already votes for this image
            AlreadyResolvedError: the duel's window has closed
        """
        async with self._transaction_context(session) as s:
            duel = await s.get(Duel, duel_id)
            if duel is None or image_id not in duel.image_ids:
                raise InvalidTargetError(duel_id, image_id)
            if not duel.is_open:
                raise AlreadyResolvedError(duel_id)

            result = await s.execute(
                select(Vote).where(Vote.duel_id == duel_id, Vote.user_id == voter_id)
            )
            existing = result.scalar_one_or_none()

            if existing is None:
                s.add(Vote(duel_id=duel_id, user_id=voter_id, image_id=image_id))
                self.logger.debug(f"Vote recorded: duel {duel_id}, voter {voter_id} -> image {image_id}")
                return VoteOutcome.RECORDED

            if existing.image_id == image_id:
                raise DuplicateVoteError(duel_id, voter_id)

            existing.image_id = image_id
            existing.voted_at = utcnow()
            self.logger.debug(f"Vote changed: duel {duel_id}, voter {voter_id} -> image {image_id}")
            return VoteOutcome.CHANGED

    async def get_tally(self, duel_id: int, session: Optional[AsyncSession] = None) -> Dict[int, int]:
        """Vote counts keyed by image id. Images with no votes are absent."""
        async with self._transaction_context(session) as s:
            result = await s.execute(
                select(Vote.image_id, func.count(Vote.id))
                .where(Vote.duel_id == duel_id)
                .group_by(Vote.image_id)
            )
            return {image_id: count for image_id, count in result.all()}

    async def get_voter_ids(self, duel_id: int, session: Optional[AsyncSession] = None) -> List[int]:
        async with self._transaction_context(session) as s:
            result = await s.execute(
                select(Vote.user_id).where(Vote.duel_id == duel_id).order_by(Vote.voted_at)
            )
            return [row[0] for row in result.all()]

    async def get_vote(self, duel_id: int, voter_id: int,
                       session: Optional[AsyncSession] = None) -> Optional[int]:
        """The image id a voter currently backs, or None"""
        async with self._transaction_context(session) as s:
            result = await s.execute(
                select(Vote.image_id).where(Vote.duel_id == duel_id, Vote.user_id == voter_id)
            )
            return result.scalar_one_or_none()
