"""
PointForge signals — public event API.

Emitted signals (after the emitting service's atomic block exits):
- transaction_recorded: Emitted by PointLedger for every created transaction
- redemption_processed: Emitted by PointLedger when a redemption is processed
- event_points_distributed: Emitted by EventDistributor after a distribution
"""

from django.dispatch import Signal

# Ledger signals (emitted by services)
transaction_recorded = Signal()  # sender=Transaction, transaction=Transaction
redemption_processed = Signal()  # sender=Transaction, transaction=Transaction, actor=str
event_points_distributed = Signal()  # sender=Event, event=Event, transactions=list
