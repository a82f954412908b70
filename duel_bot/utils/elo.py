import math
from dataclasses import dataclass

from duel_bot.constants import EloConstants


@dataclass(frozen=True)
class RatingChange:
    """New ratings and signed deltas for both sides of a decided duel"""
    winner_new_rating: int
    loser_new_rating: int
    winner_change: int
    loser_change: int


class EloCalculator:
    """Handles Elo rating calculations for image duels. Pure functions, no I/O."""

    @staticmethod
    def calculate_expected_score(rating_a: float, rating_b: float) -> float:
        """
        Calculate the expected score for image A against image B

        Args:
            rating_a: Image A's current Elo rating
            rating_b: Image B's current Elo rating

        Returns:
            Expected score (0.0 to 1.0) for image A
        """
        return 1 / (1 + math.pow(10, (rating_b - rating_a) / EloConstants.RATING_SCALE))

    @staticmethod
    def calculate_new_rating(current_rating: int, expected_score: float,
                             actual_score: float, k_factor: int) -> int:
        """
        Calculate a new rating after a duel

        Args:
            current_rating: Rating before the duel
            expected_score: Expected score (0-1)
            actual_score: 1 for a win, 0 for a loss
            k_factor: Rating volatility

        Returns:
            New rating, rounded
        """
        return round(current_rating + k_factor * (actual_score - expected_score))

    @staticmethod
    def calculate_duel_result(winner_rating: int, loser_rating: int, k_factor: int) -> RatingChange:
        """
        Plain Elo for both sides of a decided duel.

        Winner scores 1, loser scores 0. Gains and losses are symmetric.
        """
        winner_expected = EloCalculator.calculate_expected_score(winner_rating, loser_rating)
        loser_expected = EloCalculator.calculate_expected_score(loser_rating, winner_rating)

        winner_new = EloCalculator.calculate_new_rating(winner_rating, winner_expected, 1, k_factor)
        loser_new = EloCalculator.calculate_new_rating(loser_rating, loser_expected, 0, k_factor)
        loser_new = max(EloConstants.RATING_FLOOR, loser_new)

        return RatingChange(
            winner_new_rating=winner_new,
            loser_new_rating=loser_new,
            winner_change=winner_new - winner_rating,
            loser_change=loser_new - loser_rating
        )

    @staticmethod
    def calculate_streak_multiplier(winner_streak: int, streak_bonus_2: float,
                                    streak_bonus_3: float) -> float:
        """Multiplier for the winner's gain given its streak including this win"""
        if winner_streak >= EloConstants.STREAK_TIER_3:
            return 1 + streak_bonus_3
        if winner_streak == EloConstants.STREAK_TIER_2:
            return 1 + streak_bonus_2
        return 1.0

    @staticmethod
    def calculate_upset_multiplier(winner_rating: int, loser_rating: int, upset_bonus: float) -> float:
        """Linear in the rating gap, full strength at the gap cap. 1.0 when not an upset."""
        if winner_rating >= loser_rating:
            return 1.0
        gap = loser_rating - winner_rating
        scale = min(gap / EloConstants.UPSET_GAP_CAP, 1)
        return 1 + upset_bonus * scale

    @staticmethod
    def calculate_bonus_duel_result(winner_rating: int, loser_rating: int, k_factor: int,
                                    winner_streak: int = 0, streak_bonus_2: float = 0.0,
                                    streak_bonus_3: float = 0.0, upset_bonus: float = 0.0,
                                    is_wildcard: bool = False) -> RatingChange:
        """
        Elo with bonuses applied to the winner's gain.

        The base deltas are plain Elo. The winner's gain is then multiplied,
        rounding after each step, by the streak bonus, the upset bonus and
        finally the wildcard multiplier. The wildcard multiplier also scales
        the loser's loss. The loser's change is always stored as a negative
        magnitude and ratings are floored at zero.

        Args:
            winner_rating: Winner's pre-duel rating
            loser_rating: Loser's pre-duel rating
            k_factor: Rating volatility
            winner_streak: Winner's win streak counting this win
            streak_bonus_2: Bonus fraction at a streak of exactly 2
            streak_bonus_3: Bonus fraction at a streak of 3 or more
            upset_bonus: Bonus fraction at a full-scale upset
            is_wildcard: Whether the duel was a wildcard pick

        Returns:
            RatingChange for both sides
        """
        winner_expected = EloCalculator.calculate_expected_score(winner_rating, loser_rating)
        loser_expected = EloCalculator.calculate_expected_score(loser_rating, winner_rating)

        winner_change = round(k_factor * (1 - winner_expected))
        loser_change = round(k_factor * (0 - loser_expected))

        streak_multiplier = EloCalculator.calculate_streak_multiplier(
            winner_streak, streak_bonus_2, streak_bonus_3
        )
        if streak_multiplier != 1.0:
            winner_change = round(winner_change * streak_multiplier)

        upset_multiplier = EloCalculator.calculate_upset_multiplier(winner_rating, loser_rating, upset_bonus)
        if upset_multiplier != 1.0:
            winner_change = round(winner_change * upset_multiplier)

        if is_wildcard:
            winner_change = round(winner_change * EloConstants.WILDCARD_MULTIPLIER)
            loser_change = round(loser_change * EloConstants.WILDCARD_MULTIPLIER)

        loser_change = -abs(loser_change)

        winner_new = max(EloConstants.RATING_FLOOR, winner_rating + winner_change)
        loser_new = max(EloConstants.RATING_FLOOR, loser_rating + loser_change)

        return RatingChange(
            winner_new_rating=winner_new,
            loser_new_rating=loser_new,
            winner_change=winner_new - winner_rating,
            loser_change=loser_new - loser_rating
        )

    @staticmethod
    def soft_reset(current_rating: int, default_rating: int) -> int:
        """Season soft reset: halfway back to the starting rating"""
        return round((current_rating + default_rating) / 2)

    @staticmethod
    def calculate_win_rate(wins: int, losses: int) -> float:
        """Win rate as a percentage (0.0 to 100.0)"""
        total = wins + losses
        if total == 0:
            return 0.0
        return (wins / total) * 100

    @staticmethod
    def get_rank_name(elo: int) -> str:
        """Rank tier for display"""
        if elo >= 1400:
            return 'Master'
        if elo >= 1300:
            return 'Diamond'
        if elo >= 1200:
            return 'Platinum'
        if elo >= 1100:
            return 'Gold'
        if elo >= 1000:
            return 'Silver'
        return 'Bronze'

    @staticmethod
    def get_rank_emoji(elo: int) -> str:
        if elo >= 1400:
            return '👑'
        if elo >= 1300:
            return '💎'
        if elo >= 1200:
            return '⭐'
        if elo >= 1100:
            return '🔷'
        if elo >= 1000:
            return '🔹'
        return '⚪'

    @staticmethod
    def format_elo_change(elo_change: int) -> str:
        """
        Format Elo change for display

        Args:
            elo_change: The Elo change value

        Returns:
            Formatted string with sign
        """
        if elo_change > 0:
            return f"+{elo_change}"
        elif elo_change < 0:
            return str(elo_change)
        else:
            return "±0"
