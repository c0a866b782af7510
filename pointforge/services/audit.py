"""Audit service — re-derives ledger state from the transaction log.

The ledger keeps balances and event pools as running totals. The audit
recomputes them from the records and reports every mismatch without
changing anything.

Usage:
    report = run_audit()
    if not report.ok:
        for issue in report.issues:
            print(issue.check, issue.message)
"""

import logging
from dataclasses import asdict, dataclass, field

from django.db.models import Count, Q, Sum
from django.db.models.functions import Coalesce

from pointforge.models import (
    Event,
    PromotionKind,
    Transaction,
    TransactionType,
    User,
)

logger = logging.getLogger(__name__)


@dataclass
class AuditIssue:
    """One inconsistency found by the audit."""

    check: str
    message: str
    data: dict = field(default_factory=dict)


@dataclass
class AuditReport:
    issues: list[AuditIssue] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.issues

    def as_dict(self) -> dict:
        return {"ok": self.ok, "issues": [asdict(issue) for issue in self.issues]}


def run_audit(using: str = "default") -> AuditReport:
    """Run every check and collect the issues found."""
    report = AuditReport()
    for check in (_check_balances, _check_transfers, _check_promotion_usage, _check_events):
        report.issues.extend(check(using))

    for issue in report.issues:
        logger.warning("Audit %s: %s %s", issue.check, issue.message, issue.data)
    logger.info("Audit finished with %d issue(s)", len(report.issues))
    return report


def _check_balances(using: str) -> list[AuditIssue]:
    users = User.objects.using(using).annotate(
        expected=Coalesce(
            Sum("transactions__amount", filter=Q(transactions__applied=True)),
            0,
        )
    )
    issues = []
    for user in users:
        if user.points < 0:
            issues.append(AuditIssue(
                "balance",
                f"{user.utorid} has a negative balance",
                {"utorid": user.utorid, "points": user.points},
            ))
        if user.points != user.expected:
            issues.append(AuditIssue(
                "balance",
                f"{user.utorid} balance does not match applied transactions",
                {"utorid": user.utorid, "points": user.points, "expected": user.expected},
            ))
    return issues


def _check_transfers(using: str) -> list[AuditIssue]:
    legs = (
        Transaction.objects.using(using)
        .filter(type=TransactionType.TRANSFER)
        .select_related("related")
    )
    issues = []
    for leg in legs:
        other = leg.related
        if other is None or other.related_id != leg.pk:
            issues.append(AuditIssue(
                "transfer",
                f"transfer #{leg.pk} is not cross-linked",
                {"transaction_id": leg.pk, "related_id": leg.related_id},
            ))
        elif leg.is_transfer_debit and leg.amount + other.amount != 0:
            issues.append(AuditIssue(
                "transfer",
                f"transfer #{leg.pk}/#{other.pk} does not sum to zero",
                {"debit_id": leg.pk, "credit_id": other.pk, "total": leg.amount + other.amount},
            ))
    return issues


def _check_promotion_usage(using: str) -> list[AuditIssue]:
    through = Transaction.promotions.through
    repeated = (
        through.objects.using(using)
        .filter(promotion__kind=PromotionKind.ONETIME)
        .values("promotion_id", "transaction__owner__utorid")
        .annotate(uses=Count("id"))
        .filter(uses__gt=1)
        .order_by("promotion_id")
    )
    return [
        AuditIssue(
            "promotion",
            f"one-time promotion {row['promotion_id']} used {row['uses']} times",
            {
                "promotion_id": row["promotion_id"],
                "utorid": row["transaction__owner__utorid"],
                "uses": row["uses"],
            },
        )
        for row in repeated
    ]


def _check_events(using: str) -> list[AuditIssue]:
    events = Event.objects.using(using).annotate(
        awarded=Coalesce(
            Sum("transactions__amount", filter=Q(transactions__type=TransactionType.EVENT)),
            0,
        )
    )
    issues = []
    for event in events:
        if event.points_remain < 0:
            issues.append(AuditIssue(
                "event",
                f"event #{event.pk} pool is negative",
                {"event_id": event.pk, "points_remain": event.points_remain},
            ))
        if event.points_awarded != event.awarded:
            issues.append(AuditIssue(
                "event",
                f"event #{event.pk} points_awarded does not match its awards",
                {"event_id": event.pk, "points_awarded": event.points_awarded, "expected": event.awarded},
            ))
    return issues
