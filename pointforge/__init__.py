"""
PointForge - campus loyalty points ledger.

Usage:
    from pointforge import PointLedger, EventDistributor
    from pointforge.requests import PurchaseRequest, TransferRequest

    ledger = PointLedger()
    ledger.apply(PurchaseRequest(actor="cashier1", utorid="student1", spent="25.00"))
    ledger.apply(TransferRequest(actor="student1", utorid="student2", amount=50))

    EventDistributor(ledger).distribute(event_id=3, actor="organizr", amount_per_guest=20)

    # Gates validation
    Gates.sufficient_balance(user, 100)
"""


def __getattr__(name):
    if name == "PointLedger":
        from pointforge.services.ledger import PointLedger

        return PointLedger
    if name == "EventDistributor":
        from pointforge.services.events import EventDistributor

        return EventDistributor
    if name == "PromotionEvaluator":
        from pointforge.services.promotions import PromotionEvaluator

        return PromotionEvaluator
    if name == "Gates":
        from pointforge.gates import Gates

        return Gates
    if name == "GateResult":
        from pointforge.gates import GateResult

        return GateResult
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = ["PointLedger", "EventDistributor", "PromotionEvaluator", "Gates", "GateResult"]
__version__ = "0.1.0"
