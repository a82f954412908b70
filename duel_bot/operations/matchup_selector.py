"""
Matchup Selector

Chooses two distinct, non-retired images for the next duel of a guild.

Balanced mode (the default) rolls the guild's wildcard chance first. A
successful roll skips straight to wildcard selection. Otherwise it searches
increasing rating-difference tolerance bands for a pair from different
uploaders that has not met recently, and falls back to wildcard selection
when no band yields one. Wildcard selection prefers different uploaders and
fresh pairs but always returns something once two images exist.

Plain mode scans the shuffled pool for the first pair that has not met
recently and falls back to the first two images. It never flags a wildcard.
"""

import random
from dataclasses import dataclass
from itertools import combinations
from typing import FrozenSet, Iterable, List, Optional, Set, Tuple

from sqlalchemy import select

from duel_bot.constants import MatchmakingConstants
from duel_bot.database.models import Duel, Image
from duel_bot.utils.exceptions import InsufficientPoolError
from duel_bot.utils.logger import setup_logger

logger = setup_logger(__name__)

PairKey = FrozenSet[int]


@dataclass
class Matchup:
    image1: Image
    image2: Image
    is_wildcard: bool = False

    @property
    def pair_key(self) -> PairKey:
        return frozenset((self.image1.id, self.image2.id))


class MatchupSelector:
    def __init__(self, database, rng: Optional[random.Random] = None):
        self.db = database
        self.rng = rng or random.Random()
        self.logger = logger

    async def get_active_pool(self, guild_id: int) -> List[Image]:
        """Non-retired images of a guild in random order"""
        images = await self.db.get_images(guild_id, include_retired=False)
        images.sort(key=lambda image: image.id)
        self.rng.shuffle(images)
        return images

    async def get_recent_matchups(self, guild_id: int,
                                  window: int = MatchmakingConstants.RECENT_MATCHUP_WINDOW) -> Set[PairKey]:
        """Unordered image-id pairs of the guild's most recently concluded duels"""
        async with self.db.get_session() as session:
            result = await session.execute(
                select(Duel.image1_id, Duel.image2_id)
                .where(Duel.guild_id == guild_id, Duel.ended_at.isnot(None))
                .order_by(Duel.ended_at.desc(), Duel.id.desc())
                .limit(window)
            )
            return {frozenset((a, b)) for a, b in result.all()}

    async def select_pair(self, guild_id: int, wildcard_chance: float = 0.0,
                          balanced: bool = True) -> Matchup:
        """
        Pick the next matchup for a guild.

        Raises:
            InsufficientPoolError: fewer than two non-retired images
        """
        pool = await self.get_active_pool(guild_id)
        if len(pool) < 2:
            raise InsufficientPoolError(guild_id, len(pool))

        recent = await self.get_recent_matchups(guild_id)

        if not balanced:
            return self._plain_pair(pool, recent)

        if self.rng.random() < wildcard_chance:
            self.logger.info(f"Wildcard roll succeeded for guild {guild_id}")
            return self._wildcard_pair(pool, recent)

        matchup = self._balanced_pair(pool, recent)
        if matchup:
            return matchup

        self.logger.info(f"No balanced pair for guild {guild_id}, falling back to wildcard selection")
        return self._wildcard_pair(pool, recent)

    @staticmethod
    def _first_pair(pairs: Iterable[Tuple[Image, Image]], recent: Set[PairKey],
                    different_uploaders: bool = False,
                    tolerance: Optional[int] = None) -> Optional[Tuple[Image, Image]]:
        for image1, image2 in pairs:
            if frozenset((image1.id, image2.id)) in recent:
                continue
            if different_uploaders and image1.uploader_id == image2.uploader_id:
                continue
            if tolerance is not None and abs(image1.elo - image2.elo) > tolerance:
                continue
            return image1, image2
        return None

    def _plain_pair(self, pool: List[Image], recent: Set[PairKey]) -> Matchup:
        pair = self._first_pair(combinations(pool, 2), recent)
        if pair is None:
            pair = (pool[0], pool[1])
        return Matchup(image1=pair[0], image2=pair[1], is_wildcard=False)

    def _balanced_pair(self, pool: List[Image], recent: Set[PairKey]) -> Optional[Matchup]:
        # Stable sort keeps the random order among equal ratings
        by_rating = sorted(pool, key=lambda image: image.elo)
        for tolerance in MatchmakingConstants.TOLERANCE_BANDS:
            pair = self._first_pair(
                combinations(by_rating, 2), recent,
                different_uploaders=True, tolerance=tolerance
            )
            if pair:
                return Matchup(image1=pair[0], image2=pair[1], is_wildcard=False)
        return None

    def _wildcard_pair(self, pool: List[Image], recent: Set[PairKey]) -> Matchup:
        pair = (
            self._first_pair(combinations(pool, 2), recent, different_uploaders=True)
            or self._first_pair(combinations(pool, 2), recent)
            or self._first_pair(combinations(pool, 2), set(), different_uploaders=True)
            or (pool[0], pool[1])
        )
        return Matchup(image1=pair[0], image2=pair[1], is_wildcard=True)
