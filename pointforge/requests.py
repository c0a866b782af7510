"""
Ledger requests — one frozen dataclass per transaction kind.

Each variant carries exactly the fields valid for its kind. ``actor`` is the
utorid of the authenticated user performing the request; the API layer
resolves it from the session.

    PointLedger.apply(PurchaseRequest(actor="cashier1", utorid="student1",
                                      spent=Decimal("25.00"),
                                      promotion_ids=[3]))
"""

from dataclasses import dataclass, field
from decimal import Decimal


@dataclass(frozen=True)
class PurchaseRequest:
    """Cashier records a purchase; receiver earns base + promotion points."""

    actor: str
    utorid: str
    spent: Decimal
    promotion_ids: list[int] = field(default_factory=list)
    remark: str = ""
    require_promotions: bool = False


@dataclass(frozen=True)
class RedemptionRequest:
    """User asks to redeem ``amount`` of their own points."""

    actor: str
    amount: int
    remark: str = ""


@dataclass(frozen=True)
class ProcessRedemptionRequest:
    """Cashier completes a pending redemption; this is when points leave."""

    actor: str
    transaction_id: int


@dataclass(frozen=True)
class TransferRequest:
    """User sends ``amount`` of their points to another user."""

    actor: str
    utorid: str
    amount: int
    remark: str = ""


@dataclass(frozen=True)
class EventAwardRequest:
    """Organizer awards ``amount`` points from an event pool to one guest."""

    actor: str
    event_id: int
    utorid: str
    amount: int
    remark: str = ""


@dataclass(frozen=True)
class AdjustmentRequest:
    """Manager applies a signed correction, optionally tied to a transaction."""

    actor: str
    utorid: str
    amount: int
    related_id: int | None = None
    remark: str = ""


LedgerRequest = (
    PurchaseRequest
    | RedemptionRequest
    | ProcessRedemptionRequest
    | TransferRequest
    | EventAwardRequest
    | AdjustmentRequest
)
