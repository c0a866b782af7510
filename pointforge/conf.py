"""
PointForge configuration.

Usage in settings.py:
    POINTFORGE = {
        "POINTS_PER_DOLLAR": 4,
        "PROMOTION_RATE_MULTIPLIER": 4,
        "USER_DIRECTORY": "myproject.directory.LdapUserDirectory",
    }
"""

from dataclasses import dataclass
from typing import Any

from django.conf import settings


@dataclass
class PointForgeSettings:
    """PointForge configuration settings."""

    # Base purchase points: 1 point per $0.25, rounded up
    POINTS_PER_DOLLAR: int = 4

    # Promotion rate bonus = ceil(spent * rate * multiplier)
    PROMOTION_RATE_MULTIPLIER: int = 4

    # Purchases may only credit verified users
    REQUIRE_VERIFIED_RECEIVER: bool = True

    # History pagination
    DEFAULT_PAGE_SIZE: int = 10

    # Dotted path to a UserDirectory implementation ("" = model-backed)
    USER_DIRECTORY: str = ""


def get_pointforge_settings() -> PointForgeSettings:
    """Load settings from Django settings."""
    user_settings: dict[str, Any] = getattr(settings, "POINTFORGE", {})
    return PointForgeSettings(**user_settings)


class _LazySettings:
    """Lazy proxy that re-reads settings on every attribute access."""

    def __getattr__(self, name):
        return getattr(get_pointforge_settings(), name)


pointforge_settings = _LazySettings()
