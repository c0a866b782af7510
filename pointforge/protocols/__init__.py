"""PointForge protocols."""

from pointforge.protocols.directory import UserDirectory, UserInfo

__all__ = [
    "UserDirectory",
    "UserInfo",
]
