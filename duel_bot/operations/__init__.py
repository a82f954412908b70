"""
Business logic operations for the duel system.

Each module works against the shared Database and keeps Discord out of the
picture: matchup selection, vote recording, duel resolution, retirement and
image management.
"""
