"""PointForge models.

Ledger state lives in four tables plus two join tables:
- User: identity, role, balance
- Transaction: the points log
- Promotion, PromotionWallet, PromotionUsage: promotion definitions, grants,
  and one-time consumption
- Event: RSVP list and point pool
"""

from pointforge.models.user import User, Role, ROLE_RANK
from pointforge.models.promotion import (
    Promotion,
    PromotionKind,
    PromotionWallet,
    PromotionUsage,
)
from pointforge.models.event import Event
from pointforge.models.transaction import (
    Transaction,
    TransactionType,
    FLAGGABLE_TYPES,
)

__all__ = [
    "User",
    "Role",
    "ROLE_RANK",
    "Promotion",
    "PromotionKind",
    "PromotionWallet",
    "PromotionUsage",
    "Event",
    "Transaction",
    "TransactionType",
    "FLAGGABLE_TYPES",
]
