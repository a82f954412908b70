"""
Custom exceptions for the duel system with user-friendly error messages.
"""

class DuelError(Exception):
    """Base exception for duel-related errors."""
    def __init__(self, message: str, user_message: str = None):
        super().__init__(message)
        self.user_message = user_message or message

class InsufficientPoolError(DuelError):
    """Raised when fewer than two eligible images exist for a matchup."""
    def __init__(self, guild_id: int, available: int):
        super().__init__(
            f"Guild {guild_id} has {available} eligible image(s), need 2",
            "❌ Not enough active images for a duel! Import at least two."
        )
        self.available = available

class DuplicateVoteError(DuelError):
    """Raised when a voter re-selects the image they already voted for."""
    def __init__(self, duel_id: int, voter_id: int):
        super().__init__(
            f"Voter {voter_id} already voted this way in duel {duel_id}",
            "You already voted for this image! ♡"
        )

class InvalidTargetError(DuelError):
    """Raised when a vote names an image that is not in the duel."""
    def __init__(self, duel_id: int, image_id: int):
        super().__init__(
            f"Image {image_id} is not part of duel {duel_id}",
            "❌ That image isn't in the current duel."
        )

class AlreadyResolvedError(DuelError):
    """Raised when resolving a duel whose window is already closed."""
    def __init__(self, duel_id: int):
        super().__init__(
            f"Duel {duel_id} is already resolved",
            "This duel has already ended."
        )

class NoActiveDuelError(DuelError):
    """Raised when an action needs an open voting window and there is none."""
    def __init__(self, guild_id: int):
        super().__init__(
            f"No active duel for guild {guild_id}",
            "❌ There's no active duel right now!"
        )

class DuelPausedError(DuelError):
    """Raised when an action is refused because the guild is paused."""
    def __init__(self, guild_id: int):
        super().__init__(
            f"Duels are paused for guild {guild_id}",
            "⏸️ Duels are paused. Resume them first."
        )

class ConfigMissingError(DuelError):
    """Raised when a guild has no configuration or no duel channel."""
    def __init__(self, guild_id: int):
        super().__init__(
            f"Guild {guild_id} has no duel configuration",
            "❌ This server isn't set up yet! Run `/duel-setup` first."
        )

class ConfigValidationError(DuelError):
    """Raised when an admin supplies an invalid configuration value."""
    def __init__(self, field: str, reason: str):
        super().__init__(
            f"Invalid value for {field}: {reason}",
            f"❌ {reason}"
        )
        self.field = field

class ImageNotFoundError(DuelError):
    """Raised when an image id does not exist in the guild."""
    def __init__(self, image_id: int):
        super().__init__(
            f"Image {image_id} not found",
            f"❌ Image #{image_id} not found in this server!"
        )

class CollaboratorUnavailableError(DuelError):
    """Raised when the chat platform or storage cannot be reached."""
    def __init__(self, operation: str, details: str = None, transient: bool = True):
        super().__init__(
            f"Collaborator failure during {operation}: {details}",
            "❌ Discord or storage is having trouble. Please try again later."
        )
        self.transient = transient

class DuelInvariantError(DuelError):
    """Raised when persisted duel data violates a core invariant."""
    def __init__(self, duel_id: int, details: str):
        super().__init__(
            f"Invariant violated for duel {duel_id}: {details}",
            "❌ This duel's data is inconsistent. An admin needs to look at it."
        )
        self.duel_id = duel_id

class DuelAlreadyRunningError(DuelError):
    """Raised when starting a duel while a voting window is open."""
    def __init__(self, guild_id: int):
        super().__init__(
            f"Guild {guild_id} already has an active duel",
            "⚔️ A duel is already running! Skip or stop it first."
        )
