"""
Bot-wide constants for the Image Duel bot.

This module contains the fixed numbers used by the rating, matchmaking and
retirement code so they are defined in exactly one place.
"""

class EloConstants:
    """Constants related to Elo calculations."""

    # Denominator of the logistic expected-score curve
    RATING_SCALE = 400

    # Upset bonus reaches full strength at this rating gap
    UPSET_GAP_CAP = 200

    # Wildcard duels swing both sides harder
    WILDCARD_MULTIPLIER = 1.5

    # Ratings never drop below this
    RATING_FLOOR = 0

    # Streak length at which each bonus tier applies
    STREAK_TIER_2 = 2
    STREAK_TIER_3 = 3

class MatchmakingConstants:
    """Constants for matchup selection."""

    # Rating-difference tolerances tried in order for balanced pairs
    TOLERANCE_BANDS = (100, 200, 300, 500, 1000)

    # Number of most recent concluded duels whose pairs are avoided
    RECENT_MATCHUP_WINDOW = 5

class RetirementConstants:
    """Constants for automatic retirement."""

    SECONDS_PER_DAY = 86400

    # Smart threshold covers roughly a day and a half of duels
    SMART_DAYS_MULTIPLIER = 1.5
    SMART_MINIMUM_LOSSES = 2

class CacheConstants:
    """Constants for caching behavior."""

    # Leaderboard TTL (seconds)
    LEADERBOARD_CACHE_TTL = 300

    # Live tally keys outlive any sane voting window
    TALLY_CACHE_TTL = 86400

    # Resolution lock expiry (seconds)
    RESOLUTION_LOCK_TTL = 30

class PaginationConstants:
    """Constants for paginated displays."""

    LEADERBOARD_SIZE = 15
    LOGS_PER_PAGE = 10

class UIConstants:
    """Constants for Discord UI elements."""

    DEFAULT_EMBED_COLOR = 0xff69b4  # Pink
    GOLD_COLOR = 0xffd700
    ERROR_COLOR = 0xe74c3c
    SUCCESS_COLOR = 0x2ecc71
    WILDCARD_COLOR = 0x9b59b6

    TROPHY_EMOJI = "🏆"
    SWORDS_EMOJI = "⚔️"
    WILDCARD_EMOJI = "🃏"

    # Custom id prefix for persistent vote buttons
    VOTE_BUTTON_PREFIX = "duel_vote"
