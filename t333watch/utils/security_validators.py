"""Input hygiene helpers shared by routes and services."""

import re

_TWITCH_LOGIN_RE = re.compile(r"^[a-zA-Z0-9_]{1,25}$")


def sanitize_for_logging(value) -> str:
    """Sanitize user-controlled strings for safe logging.

    Prevents log injection by removing newlines and other control characters
    that could be used to forge log entries.

    Args:
        value: Value to sanitize (can be None)

    Returns:
        Sanitized string with newlines replaced by spaces
    """
    if value is None:
        return ""
    if not isinstance(value, str):
        value = str(value)
    return value.replace("\n", " ").replace("\r", " ").replace("\x00", "")


def normalize_channel_name(channel: str) -> str:
    """Normalize a Twitch channel login: trimmed, lowercase, no leading '@'."""
    return channel.strip().lstrip("@").lower()


def is_valid_channel_name(channel: str) -> bool:
    """Twitch logins are 1-25 characters of letters, digits and underscores."""
    return bool(_TWITCH_LOGIN_RE.match(channel or ""))
