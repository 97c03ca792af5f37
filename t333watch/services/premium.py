"""Premium feature limits and catalog."""

from typing import Any

from t333watch.config import Config

FEATURE_CATALOG: dict[str, dict[str, Any]] = {
    "customLayouts": {"enabled": True, "description": "Create and save custom grid layouts"},
    "streamPinning": {
        "enabled": True,
        "description": "Pin important streams to prioritize them in layouts",
    },
    "unlimitedStreams": {
        "enabled": True,
        "maxStreams": Config.MAX_PREMIUM_STREAMS,
        "description": f"Watch up to {Config.MAX_PREMIUM_STREAMS} streams simultaneously",
    },
    "unlimitedPacks": {"enabled": True, "description": "Save unlimited stream packs"},
    "layoutSaving": {"enabled": True, "description": "Save and load custom layouts"},
    "advancedAnalytics": {"enabled": True, "description": "Detailed viewing analytics and insights"},
}


def is_premium(user: dict[str, Any] | None) -> bool:
    return bool(user and user.get("premium_flag"))


def max_streams_for(premium: bool) -> int:
    return Config.MAX_PREMIUM_STREAMS if premium else Config.MAX_FREE_STREAMS


def get_max_streams(user: dict[str, Any] | None) -> int:
    return max_streams_for(is_premium(user))


def can_add_more_streams(user: dict[str, Any] | None, current_stream_count: int) -> bool:
    return current_stream_count < get_max_streams(user)


def get_premium_features(user: dict[str, Any] | None) -> dict[str, bool]:
    """Feature flags available to the user."""
    premium = is_premium(user)
    return {
        "unlimitedStreams": premium,
        "vodSync": premium and Config.ENABLE_VOD_SYNC,
        "notifications": premium and Config.ENABLE_NOTIFICATIONS,
        "packSaving": premium,
        "packCloning": premium,
    }


def verify_features(premium: bool) -> dict[str, Any]:
    """Feature block returned by the premium verification endpoint."""
    return {
        "maxStreams": max_streams_for(premium),
        "unlimitedPacks": premium,
        "customLayouts": premium,
        "streamPinning": premium,
        "layoutSaving": premium,
    }


def premium_feature_catalog() -> dict[str, dict[str, Any]]:
    return {name: dict(feature) for name, feature in FEATURE_CATALOG.items()}


def validate_premium_limits(premium: bool, feature: str, current_usage: int) -> tuple[bool, str | None]:
    """
    Check a usage count against the tier limits.

    Args:
        premium: Whether the user currently has premium
        feature: ``streams``, ``packs`` or ``pack_streams``; anything else is allowed
        current_usage: How many of the resource the user already has

    Returns:
        (allowed, error message or None)
    """
    if feature == "streams":
        max_streams = max_streams_for(premium)
        if current_usage >= max_streams:
            if premium:
                return False, f"Premium users can watch up to {max_streams} streams"
            return False, f"Free users can watch up to {max_streams} streams. Upgrade to premium for more."

    elif feature == "packs":
        if not premium and current_usage >= Config.MAX_FREE_PACKS:
            return (
                False,
                f"Free users can save up to {Config.MAX_FREE_PACKS} packs. "
                "Upgrade to premium for unlimited packs.",
            )

    elif feature == "pack_streams":
        max_pack_streams = max_streams_for(premium)
        if current_usage > max_pack_streams:
            if premium:
                return False, f"Premium users can save up to {max_pack_streams} streams per pack"
            return (
                False,
                f"Free users can save up to {max_pack_streams} streams per pack. "
                "Upgrade to premium for more.",
            )

    return True, None
