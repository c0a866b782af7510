"""User directory protocol for identity lookups."""

from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class UserInfo:
    """Identity and flags the ledger needs to authorize and gate a request."""

    id: int
    utorid: str
    role: str  # "regular" | "cashier" | "manager" | "superuser"
    verified: bool
    suspicious: bool
    activated: bool = True


@runtime_checkable
class UserDirectory(Protocol):
    """
    Protocol for resolving users by utorid.

    The ledger resolves issuers and receivers through the directory, then
    locks the matching balance rows by ``UserInfo.id``.
    Implemented by adapters/directory.py.

    Configuration in settings.py:
        POINTFORGE = {
            "USER_DIRECTORY": "pointforge.adapters.directory.ModelUserDirectory",
        }
    """

    def get_user(self, utorid: str) -> UserInfo | None:
        """
        Return the user with this utorid.

        Args:
            utorid: Unique user identifier

        Returns:
            UserInfo, or None if no such user exists
        """
        ...
