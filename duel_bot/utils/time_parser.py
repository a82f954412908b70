"""
Duration parsing for admin settings such as duel length and interval.
"""

import re

_UNIT_SECONDS = {'d': 86400, 'h': 3600, 'm': 60, 's': 1}
_PART = re.compile(r'(\d+)\s*([dhms])')


def parse_duration(duration_str: str) -> int:
    """
    Parse a duration string into whole seconds.

    Supported formats:
    - unit groups (e.g., 6h, 90m, 1h30m, 2d)
    - plain seconds (e.g., 3600)

    Raises:
        ValueError: If the format is invalid or the duration is not positive
    """
    text = duration_str.strip().lower().replace(' ', '')
    if not text:
        raise ValueError("Duration is empty")

    if text.isdigit():
        seconds = int(text)
    else:
        matched = _PART.findall(text)
        if not matched or ''.join(f"{value}{unit}" for value, unit in matched) != text:
            raise ValueError(f"Invalid duration format: {duration_str}. Use e.g. 6h, 30m or 1h30m")
        seconds = sum(int(value) * _UNIT_SECONDS[unit] for value, unit in matched)

    if seconds <= 0:
        raise ValueError("Duration must be positive")
    return seconds


def format_duration(seconds: int) -> str:
    """Format seconds as e.g. '6h', '1h 30m' or '45m'"""
    if seconds < 0:
        raise ValueError("Negative seconds not allowed")

    days, remainder = divmod(int(seconds), 86400)
    hours, remainder = divmod(remainder, 3600)
    minutes, secs = divmod(remainder, 60)

    parts = []
    if days:
        parts.append(f"{days}d")
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    if secs or not parts:
        parts.append(f"{secs}s")
    return " ".join(parts)
