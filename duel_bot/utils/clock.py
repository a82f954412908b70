from datetime import datetime, timezone


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how DateTime columns round-trip through SQLite."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
