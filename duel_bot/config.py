import os
from dotenv import load_dotenv

load_dotenv()

class Config:
    """Bot configuration settings"""

    # Discord settings
    DISCORD_TOKEN = os.getenv('DISCORD_TOKEN')
    DISCORD_GUILD_ID = int(os.getenv('DISCORD_GUILD_ID', 0))
    DISCORD_GUILD_IDS = os.getenv('DISCORD_GUILD_IDS', '')  # Comma-separated for multi-guild support
    OWNER_DISCORD_ID = int(os.getenv('OWNER_DISCORD_ID', 0))

    # Database settings
    DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///duels.db')

    # Optional Redis for cross-process resolution locking and live tallies
    REDIS_URL = os.getenv('REDIS_URL', '')

    # Bot settings
    COMMAND_PREFIX = os.getenv('COMMAND_PREFIX', '!')
    DEBUG = os.getenv('DEBUG', 'False').lower() == 'true'

    # Defaults for newly configured guilds
    DEFAULT_DUEL_DURATION = 21600  # 6 hours of voting
    DEFAULT_DUEL_INTERVAL = 21600  # 6 hours between duels
    STARTING_ELO = 1000
    DEFAULT_K_FACTOR = 32
    DEFAULT_STREAK_BONUS_2 = 0.10
    DEFAULT_STREAK_BONUS_3 = 0.20
    DEFAULT_UPSET_BONUS = 0.25
    DEFAULT_WILDCARD_CHANCE = 0.05
    DEFAULT_MIN_VOTES = 1
    DEFAULT_RATING_MODE = 'bonus'

    # Lifecycle settings
    RECONCILE_INTERVAL_SECONDS = int(os.getenv('RECONCILE_INTERVAL_SECONDS', 60))
    TALLY_REFRESH_SECONDS = 30

    @classmethod
    def get_guild_ids(cls):
        """Get list of guild IDs for command syncing"""
        if cls.DISCORD_GUILD_IDS:
            try:
                return [int(guild_id.strip()) for guild_id in cls.DISCORD_GUILD_IDS.split(',') if guild_id.strip()]
            except ValueError:
                raise ValueError("DISCORD_GUILD_IDS must be comma-separated integers")
        elif cls.DISCORD_GUILD_ID:
            return [cls.DISCORD_GUILD_ID]
        else:
            # Global sync
            return []

    @classmethod
    def validate(cls):
        """Validate that required configuration is present"""
        if not cls.DISCORD_TOKEN:
            raise ValueError("DISCORD_TOKEN is required")
        if not cls.DISCORD_GUILD_ID and not cls.DISCORD_GUILD_IDS:
            raise ValueError("Either DISCORD_GUILD_ID or DISCORD_GUILD_IDS is required")
        if not cls.OWNER_DISCORD_ID:
            raise ValueError("OWNER_DISCORD_ID is required")
