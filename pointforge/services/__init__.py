"""PointForge services.

- pointforge.services.ledger: PointLedger (the only writer of balances)
- pointforge.services.promotions: PromotionEvaluator, wallet operations
- pointforge.services.events: EventDistributor, EventService
- pointforge.services.history: balance and transaction queries
- pointforge.services.audit: run_audit
"""

from pointforge.services import audit, events, history, ledger, promotions

__all__ = ["audit", "events", "history", "ledger", "promotions"]
