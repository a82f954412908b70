from sqlalchemy import (
    Column, Integer, String, DateTime, Boolean, Text, Float, BigInteger,
    ForeignKey, UniqueConstraint, CheckConstraint, Index
)
from sqlalchemy.orm import declarative_base, relationship
from typing import Tuple

from duel_bot.config import Config
from duel_bot.utils.clock import utcnow

Base = declarative_base()

class RatingMode:
    """How a guild turns a decided duel into rating changes."""
    SIMPLE = "simple"
    BONUS = "bonus"

    ALL = (SIMPLE, BONUS)

class SkipReason:
    """Why a resolved duel produced no rating change."""
    NO_VOTES = "no_votes"
    TIE = "tie"
    UPLOADER_ONLY = "uploader_only"
    BELOW_MIN_VOTES = "below_min_votes"
    INVARIANT = "invariant"

class GuildConfig(Base):
    """Per-guild duel tunables. Mutated only by admin actions."""
    __tablename__ = 'guild_config'

    guild_id = Column(BigInteger, primary_key=True)

    # Channels
    duel_channel_id = Column(BigInteger, nullable=True)
    image_channel_id = Column(BigInteger, nullable=True)
    log_channel_id = Column(BigInteger, nullable=True)

    # Cycle state flags
    duel_active = Column(Boolean, default=False, nullable=False)
    duel_paused = Column(Boolean, default=False, nullable=False)

    # Timing (seconds)
    duel_duration = Column(Integer, default=Config.DEFAULT_DUEL_DURATION, nullable=False)
    duel_interval = Column(Integer, default=Config.DEFAULT_DUEL_INTERVAL, nullable=False)

    # Rating
    starting_elo = Column(Integer, default=Config.STARTING_ELO, nullable=False)
    k_factor = Column(Integer, default=Config.DEFAULT_K_FACTOR, nullable=False)
    rating_mode = Column(String(10), default=Config.DEFAULT_RATING_MODE, nullable=False)
    streak_bonus_2 = Column(Float, default=Config.DEFAULT_STREAK_BONUS_2, nullable=False)
    streak_bonus_3 = Column(Float, default=Config.DEFAULT_STREAK_BONUS_3, nullable=False)
    upset_bonus = Column(Float, default=Config.DEFAULT_UPSET_BONUS, nullable=False)
    min_votes = Column(Integer, default=Config.DEFAULT_MIN_VOTES, nullable=False)

    # Matchmaking
    wildcard_chance = Column(Float, default=Config.DEFAULT_WILDCARD_CHANCE, nullable=False)
    balanced_matchmaking = Column(Boolean, default=True, nullable=False)

    # Retirement: smart threshold by default, manual thresholds when disabled (0 = off)
    smart_retirement = Column(Boolean, default=True, nullable=False)
    retire_after_losses = Column(Integer, default=0, nullable=False)
    retire_below_elo = Column(Integer, default=0, nullable=False)

    season_number = Column(Integer, default=1, nullable=False)

    # Metadata
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    @property
    def is_configured(self) -> bool:
        return self.duel_channel_id is not None

    def __repr__(self):
        return (f"<GuildConfig(guild_id={self.guild_id}, active={self.duel_active}, "
                f"paused={self.duel_paused})>")

class Image(Base):
    """A submitted image competing in duels."""
    __tablename__ = 'images'

    id = Column(Integer, primary_key=True)
    guild_id = Column(BigInteger, nullable=False, index=True)
    storage_key = Column(String(512), nullable=False, unique=True)
    uploader_id = Column(BigInteger, nullable=False)

    # Rating and record
    elo = Column(Integer, default=Config.STARTING_ELO, nullable=False)
    wins = Column(Integer, default=0, nullable=False)
    losses = Column(Integer, default=0, nullable=False)
    current_streak = Column(Integer, default=0, nullable=False)
    best_streak = Column(Integer, default=0, nullable=False)
    total_votes_received = Column(Integer, default=0, nullable=False)

    # Retirement
    retired = Column(Boolean, default=False, nullable=False, index=True)
    retired_at = Column(DateTime, nullable=True)

    # Metadata
    imported_at = Column(DateTime, default=utcnow)
    last_duel_at = Column(DateTime, nullable=True)

    __table_args__ = (
        CheckConstraint('elo >= 0', name='non_negative_elo_check'),
        Index('ix_images_guild_elo', 'guild_id', 'elo'),
    )

    @property
    def total_duels(self) -> int:
        return self.wins + self.losses

    @property
    def win_rate(self) -> float:
        if self.total_duels == 0:
            return 0.0
        return (self.wins / self.total_duels) * 100

    def __repr__(self):
        return f"<Image(id={self.id}, guild_id={self.guild_id}, elo={self.elo}, retired={self.retired})>"

class Duel(Base):
    """
    One voting window between two images. Append-only history: winner,
    tallies and ended_at are written once at resolution.
    """
    __tablename__ = 'duels'

    id = Column(Integer, primary_key=True)
    guild_id = Column(BigInteger, nullable=False, index=True)

    image1_id = Column(Integer, ForeignKey('images.id', ondelete='CASCADE'), nullable=False)
    image2_id = Column(Integer, ForeignKey('images.id', ondelete='CASCADE'), nullable=False)
    winner_id = Column(Integer, ForeignKey('images.id', ondelete='SET NULL'), nullable=True)

    image1_votes = Column(Integer, default=0, nullable=False)
    image2_votes = Column(Integer, default=0, nullable=False)
    is_wildcard = Column(Boolean, default=False, nullable=False)
    skip_reason = Column(String(20), nullable=True)

    started_at = Column(DateTime, default=utcnow, nullable=False)
    ended_at = Column(DateTime, nullable=True)

    __table_args__ = (
        CheckConstraint('image1_id != image2_id', name='distinct_duel_images_check'),
        CheckConstraint(
            'winner_id IS NULL OR winner_id = image1_id OR winner_id = image2_id',
            name='winner_in_duel_check'
        ),
        Index('ix_duels_guild_started', 'guild_id', 'started_at'),
    )

    image1 = relationship("Image", foreign_keys=[image1_id])
    image2 = relationship("Image", foreign_keys=[image2_id])
    votes = relationship("Vote", back_populates="duel", cascade="all, delete-orphan")

    @property
    def is_open(self) -> bool:
        return self.ended_at is None

    @property
    def image_ids(self) -> Tuple[int, int]:
        return (self.image1_id, self.image2_id)

    def __repr__(self):
        return (f"<Duel(id={self.id}, images=({self.image1_id}, {self.image2_id}), "
                f"winner={self.winner_id}, ended_at={self.ended_at})>")

class ActiveDuel(Base):
    """Pointer to the single open voting window of a guild."""
    __tablename__ = 'active_duels'

    guild_id = Column(BigInteger, primary_key=True)
    duel_id = Column(Integer, ForeignKey('duels.id', ondelete='CASCADE'), nullable=False, unique=True)
    image1_id = Column(Integer, nullable=False)
    image2_id = Column(Integer, nullable=False)
    message_id = Column(BigInteger, nullable=True)
    ends_at = Column(DateTime, nullable=False)

    duel = relationship("Duel")

    def __repr__(self):
        return f"<ActiveDuel(guild_id={self.guild_id}, duel_id={self.duel_id}, ends_at={self.ends_at})>"

class Vote(Base):
    """A voter's current choice in a duel. One row per (duel, voter)."""
    __tablename__ = 'votes'

    id = Column(Integer, primary_key=True)
    duel_id = Column(Integer, ForeignKey('duels.id', ondelete='CASCADE'), nullable=False, index=True)
    user_id = Column(BigInteger, nullable=False)
    image_id = Column(Integer, ForeignKey('images.id', ondelete='CASCADE'), nullable=False)
    voted_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint('duel_id', 'user_id', name='unique_vote_per_duel'),
    )

    duel = relationship("Duel", back_populates="votes")

    def __repr__(self):
        return f"<Vote(duel_id={self.duel_id}, user_id={self.user_id}, image_id={self.image_id})>"

class AuditAction:
    """Action types recorded in the audit log."""
    IMAGE_IMPORTED = "image_imported"
    IMAGE_RETIRED = "image_retired"
    IMAGE_UNRETIRED = "image_unretired"
    IMAGE_DELETED = "image_deleted"
    BULK_RETIRE = "bulk_retire"
    BULK_UNRETIRE = "bulk_unretire"
    CONFIG_SET = "config_set"
    DUEL_STARTED = "duel_started"
    DUEL_ENDED = "duel_ended"
    DUEL_CONTROL = "duel_control"
    SEASON_RESET = "season_reset"
    SYSTEM_RESET = "system_reset"

class AuditLog(Base):
    """Append-only record of admin and automatic actions."""
    __tablename__ = 'logs'

    id = Column(Integer, primary_key=True)
    guild_id = Column(BigInteger, nullable=False, index=True)
    action_type = Column(String(50), nullable=False, index=True)
    admin_id = Column(BigInteger, nullable=True)  # Null for automatic actions
    details = Column(Text)  # JSON string
    created_at = Column(DateTime, default=utcnow)

    def __repr__(self):
        return f"<AuditLog(guild_id={self.guild_id}, action='{self.action_type}')>"
