"""Image duel bot: recurring head-to-head image votes with Elo ratings."""
