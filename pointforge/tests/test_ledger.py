"""
Point ledger tests.

Tests for:
- Purchases with base points and promotions
- Redemption request and processing
- Transfers (two linked legs)
- Event awards and adjustments
- Suspicious deferral, flagging and reprocessing
- Role checks and request dispatch
"""

from decimal import Decimal
from unittest.mock import patch

import pytest
from django.db.models import Sum
from django.test import override_settings

from pointforge.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    PreconditionError,
    ValidationError,
)
from pointforge.models import PromotionUsage, PromotionWallet, Transaction, TransactionType, User
from pointforge.requests import (
    AdjustmentRequest,
    EventAwardRequest,
    ProcessRedemptionRequest,
    PurchaseRequest,
    RedemptionRequest,
    TransferRequest,
)
from pointforge.services.promotions import PromotionEvaluation
from pointforge.signals import redemption_processed, transaction_recorded

pytestmark = pytest.mark.django_db


# ═══════════════════════════════════════════════════════════════════
# Purchases
# ═══════════════════════════════════════════════════════════════════


class TestPurchase:
    def test_rate_promotion_bonus(self, ledger, cashier, student, automatic_promotion):
        """$25.00 with a 10% promotion earns 100 base + 10 bonus."""
        tx = ledger.apply(
            PurchaseRequest(
                actor="cashier1",
                utorid="student1",
                spent=Decimal("25.00"),
                promotion_ids=[automatic_promotion.pk],
            )
        )

        student.refresh_from_db()
        assert tx.type == TransactionType.PURCHASE
        assert tx.amount == 110
        assert tx.applied is True
        assert student.points == 110
        assert list(tx.promotions.values_list("pk", flat=True)) == [automatic_promotion.pk]

    def test_base_points_round_up(self, ledger, cashier, student):
        tx = ledger.apply(PurchaseRequest(actor="cashier1", utorid="student1", spent="10.01"))
        assert tx.amount == 41

    def test_fractional_cents_earn_full_precision_points(self, ledger, cashier, student):
        tx = ledger.apply(
            PurchaseRequest(actor="cashier1", utorid="student1", spent=Decimal("10.005"))
        )

        tx.refresh_from_db()
        assert tx.amount == 41
        assert tx.spent == Decimal("10.005")

    def test_sub_cent_spend_earns_a_point(self, ledger, cashier, student):
        tx = ledger.apply(
            PurchaseRequest(actor="cashier1", utorid="student1", spent=Decimal("0.004"))
        )

        student.refresh_from_db()
        assert tx.amount == 1
        assert student.points == 1

    def test_spent_finer_than_storage_rejected(self, ledger, cashier, student):
        with pytest.raises(ValidationError) as exc:
            ledger.apply(PurchaseRequest(actor="cashier1", utorid="student1", spent="1.00001"))
        assert exc.value.code == "INVALID_SPENT"
        assert Transaction.objects.count() == 0

    @override_settings(POINTFORGE={"POINTS_PER_DOLLAR": 0})
    def test_zero_point_purchase_rejected(self, ledger, cashier, student):
        with pytest.raises(ValidationError) as exc:
            ledger.apply(PurchaseRequest(actor="cashier1", utorid="student1", spent="10"))

        assert exc.value.code == "INVALID_SPENT"
        assert Transaction.objects.count() == 0

    def test_inactive_cashier_rejected(self, ledger, cashier, student):
        cashier.activated = False
        cashier.save()

        with pytest.raises(PreconditionError) as exc:
            ledger.apply(PurchaseRequest(actor="cashier1", utorid="student1", spent="10"))

        assert exc.value.code == "USER_INACTIVE"
        assert Transaction.objects.count() == 0

    def test_below_min_spending_excluded(self, ledger, cashier, student, automatic_promotion):
        tx = ledger.apply(
            PurchaseRequest(
                actor="cashier1",
                utorid="student1",
                spent=Decimal("5.00"),
                promotion_ids=[automatic_promotion.pk],
            )
        )
        assert tx.amount == 20
        assert tx.promotions.count() == 0

    def test_expired_promotion_excluded(self, ledger, cashier, student, expired_promotion):
        tx = ledger.apply(
            PurchaseRequest(
                actor="cashier1",
                utorid="student1",
                spent=Decimal("10.00"),
                promotion_ids=[expired_promotion.pk],
            )
        )
        assert tx.amount == 40

    def test_onetime_promotion_used_once(self, ledger, cashier, student, onetime_promotion):
        """Reusing a consumed one-time promotion silently awards base only."""
        PromotionWallet.objects.create(user=student, promotion=onetime_promotion)
        request = PurchaseRequest(
            actor="cashier1",
            utorid="student1",
            spent=Decimal("10.00"),
            promotion_ids=[onetime_promotion.pk],
        )

        first = ledger.apply(request)
        second = ledger.apply(request)

        assert first.amount == 90
        assert second.amount == 40
        assert second.promotions.count() == 0
        assert PromotionUsage.objects.filter(promotion=onetime_promotion, user=student).count() == 1
        assert not PromotionWallet.objects.filter(user=student).exists()
        student.refresh_from_db()
        assert student.points == 130

    def test_onetime_promotion_requires_wallet(self, ledger, cashier, student, onetime_promotion):
        tx = ledger.apply(
            PurchaseRequest(
                actor="cashier1",
                utorid="student1",
                spent=Decimal("10.00"),
                promotion_ids=[onetime_promotion.pk],
            )
        )
        assert tx.amount == 40

    def test_concurrent_onetime_use_conflicts(self, ledger, cashier, student, onetime_promotion):
        """A usage row committed by a racing purchase turns into ConflictError."""
        PromotionWallet.objects.create(user=student, promotion=onetime_promotion)
        ledger.apply(
            PurchaseRequest(
                actor="cashier1",
                utorid="student1",
                spent=Decimal("10.00"),
                promotion_ids=[onetime_promotion.pk],
            )
        )
        stale = PromotionEvaluation(
            applied_ids=[onetime_promotion.pk],
            bonus_points=50,
            onetime_ids=[onetime_promotion.pk],
        )

        with patch.object(ledger.evaluator, "evaluate", return_value=stale):
            with pytest.raises(ConflictError) as exc:
                ledger.apply(
                    PurchaseRequest(
                        actor="cashier1",
                        utorid="student1",
                        spent=Decimal("10.00"),
                        promotion_ids=[onetime_promotion.pk],
                    )
                )

        assert exc.value.code == "CONCURRENT_MODIFICATION"
        assert Transaction.objects.count() == 1
        student.refresh_from_db()
        assert student.points == 90

    def test_unknown_promotions_dropped(self, ledger, cashier, student):
        tx = ledger.apply(
            PurchaseRequest(actor="cashier1", utorid="student1", spent="10", promotion_ids=[9999])
        )
        assert tx.amount == 40

    def test_require_promotions_rejects_unknown(self, ledger, cashier, student):
        with pytest.raises(NotFoundError):
            ledger.apply(
                PurchaseRequest(
                    actor="cashier1",
                    utorid="student1",
                    spent="10",
                    promotion_ids=[9999],
                    require_promotions=True,
                )
            )

    def test_invalid_spent(self, ledger, cashier, student):
        for spent in (0, "-1", "abc", None):
            with pytest.raises(ValidationError):
                ledger.apply(PurchaseRequest(actor="cashier1", utorid="student1", spent=spent))
        assert Transaction.objects.count() == 0

    def test_regular_user_cannot_record_purchase(self, ledger, student, student_b):
        with pytest.raises(AuthorizationError):
            ledger.apply(PurchaseRequest(actor="student1", utorid="student2", spent="10"))

    def test_unverified_receiver(self, ledger, cashier, student):
        student.verified = False
        student.save()

        with pytest.raises(PreconditionError) as exc:
            ledger.apply(PurchaseRequest(actor="cashier1", utorid="student1", spent="10"))
        assert exc.value.code == "USER_NOT_VERIFIED"

    def test_unknown_receiver(self, ledger, cashier):
        with pytest.raises(NotFoundError) as exc:
            ledger.apply(PurchaseRequest(actor="cashier1", utorid="nobody12", spent="10"))
        assert exc.value.code == "USER_NOT_FOUND"

    def test_suspicious_cashier_defers_points(self, ledger, cashier, student):
        cashier.suspicious = True
        cashier.save()

        tx = ledger.apply(PurchaseRequest(actor="cashier1", utorid="student1", spent="10"))

        student.refresh_from_db()
        assert tx.suspicious is True
        assert tx.applied is False
        assert tx.amount == 40
        assert student.points == 0

    def test_as_dict(self, ledger, cashier, student):
        tx = ledger.apply(
            PurchaseRequest(actor="cashier1", utorid="student1", spent="10", remark="coffee")
        )
        data = tx.as_dict()

        assert data["utorid"] == "student1"
        assert data["type"] == "purchase"
        assert data["spent"] == 10.0
        assert data["earned"] == 40
        assert data["createdBy"] == "cashier1"
        assert data["remark"] == "coffee"
        assert data["promotionIds"] == []


# ═══════════════════════════════════════════════════════════════════
# Redemptions
# ═══════════════════════════════════════════════════════════════════


class TestRedemption:
    def test_request_does_not_touch_balance(self, ledger, student, fund):
        fund(student, 200)

        tx = ledger.apply(RedemptionRequest(actor="student1", amount=150))

        student.refresh_from_db()
        assert tx.amount == -150
        assert tx.processed is False
        assert tx.applied is False
        assert student.points == 200
        assert tx.as_dict()["redeemed"] == 150

    def test_insufficient_balance_creates_nothing(self, ledger, student, fund):
        fund(student, 800)
        count = Transaction.objects.count()

        with pytest.raises(PreconditionError) as exc:
            ledger.apply(RedemptionRequest(actor="student1", amount=1000))

        assert exc.value.code == "INSUFFICIENT_POINTS"
        assert exc.value.data["available"] == 800
        assert Transaction.objects.count() == count

    def test_process_debits_once(self, ledger, cashier, student, fund):
        fund(student, 200)
        tx = ledger.apply(RedemptionRequest(actor="student1", amount=150))

        processed = ledger.apply(ProcessRedemptionRequest(actor="cashier1", transaction_id=tx.pk))

        student.refresh_from_db()
        assert processed.processed is True
        assert processed.processed_by == cashier
        assert processed.processed_at is not None
        assert student.points == 50

        with pytest.raises(ConflictError) as exc:
            ledger.apply(ProcessRedemptionRequest(actor="cashier1", transaction_id=tx.pk))
        assert exc.value.code == "REDEMPTION_ALREADY_PROCESSED"
        student.refresh_from_db()
        assert student.points == 50

    def test_process_rechecks_balance(self, ledger, cashier, student, student_b, fund):
        fund(student, 200)
        tx = ledger.apply(RedemptionRequest(actor="student1", amount=150))
        ledger.apply(TransferRequest(actor="student1", utorid="student2", amount=100))

        with pytest.raises(PreconditionError) as exc:
            ledger.apply(ProcessRedemptionRequest(actor="cashier1", transaction_id=tx.pk))

        assert exc.value.code == "INSUFFICIENT_POINTS"
        tx.refresh_from_db()
        assert tx.processed is False
        student.refresh_from_db()
        assert student.points == 100

    def test_inactive_cashier_cannot_process(self, ledger, cashier, student, fund):
        fund(student, 100)
        tx = ledger.apply(RedemptionRequest(actor="student1", amount=50))
        User.objects.filter(pk=cashier.pk).update(activated=False)

        with pytest.raises(PreconditionError) as exc:
            ledger.apply(ProcessRedemptionRequest(actor="cashier1", transaction_id=tx.pk))

        assert exc.value.code == "USER_INACTIVE"
        tx.refresh_from_db()
        assert tx.processed is False

    def test_regular_user_cannot_process(self, ledger, student, fund):
        fund(student, 200)
        tx = ledger.apply(RedemptionRequest(actor="student1", amount=50))

        with pytest.raises(AuthorizationError):
            ledger.apply(ProcessRedemptionRequest(actor="student1", transaction_id=tx.pk))

    def test_process_non_redemption(self, ledger, cashier, student):
        tx = ledger.apply(PurchaseRequest(actor="cashier1", utorid="student1", spent="10"))

        with pytest.raises(PreconditionError) as exc:
            ledger.apply(ProcessRedemptionRequest(actor="cashier1", transaction_id=tx.pk))
        assert exc.value.code == "NOT_A_REDEMPTION"

    def test_process_unknown_transaction(self, ledger, cashier):
        with pytest.raises(NotFoundError):
            ledger.apply(ProcessRedemptionRequest(actor="cashier1", transaction_id=424242))

    def test_unverified_user_cannot_redeem(self, ledger, student, fund):
        fund(student, 100)
        student.verified = False
        student.save()

        with pytest.raises(PreconditionError) as exc:
            ledger.apply(RedemptionRequest(actor="student1", amount=10))
        assert exc.value.code == "USER_NOT_VERIFIED"

    @pytest.mark.parametrize("amount", [0, -5, True, 1.5])
    def test_invalid_amount(self, ledger, student, amount):
        with pytest.raises(ValidationError):
            ledger.apply(RedemptionRequest(actor="student1", amount=amount))


# ═══════════════════════════════════════════════════════════════════
# Transfers
# ═══════════════════════════════════════════════════════════════════


class TestTransfer:
    def test_transfer_entire_balance(self, ledger, student, student_b, fund):
        fund(student, 500)

        debit, credit = ledger.apply(TransferRequest(actor="student1", utorid="student2", amount=500))

        student.refresh_from_db()
        student_b.refresh_from_db()
        assert student.points == 0
        assert student_b.points == 500
        assert debit.amount == -500
        assert credit.amount == 500
        assert debit.owner == student
        assert credit.owner == student_b
        assert debit.related_id == credit.pk
        assert credit.related_id == debit.pk
        assert debit.applied and credit.applied

    def test_transfer_dict_shape(self, ledger, student, student_b, fund):
        fund(student, 100)
        debit, credit = ledger.apply(TransferRequest(actor="student1", utorid="student2", amount=40))

        data = debit.as_dict()
        assert data["sender"] == "student1"
        assert data["recipient"] == "student2"
        assert data["sent"] == 40
        assert data["relatedId"] == credit.pk

    def test_insufficient_balance_no_legs(self, ledger, student, student_b, fund):
        fund(student, 100)
        count = Transaction.objects.count()

        with pytest.raises(PreconditionError):
            ledger.apply(TransferRequest(actor="student1", utorid="student2", amount=101))

        assert Transaction.objects.count() == count
        student_b.refresh_from_db()
        assert student_b.points == 0

    def test_self_transfer(self, ledger, student, fund):
        fund(student, 100)
        with pytest.raises(PreconditionError) as exc:
            ledger.apply(TransferRequest(actor="student1", utorid="student1", amount=10))
        assert exc.value.code == "SELF_TRANSFER"

    def test_unverified_sender(self, ledger, student, student_b, fund):
        fund(student, 100)
        student.verified = False
        student.save()

        with pytest.raises(PreconditionError) as exc:
            ledger.apply(TransferRequest(actor="student1", utorid="student2", amount=10))
        assert exc.value.code == "USER_NOT_VERIFIED"

    def test_unknown_recipient(self, ledger, student, fund):
        fund(student, 100)
        with pytest.raises(NotFoundError):
            ledger.apply(TransferRequest(actor="student1", utorid="nobody12", amount=10))


# ═══════════════════════════════════════════════════════════════════
# Event awards
# ═══════════════════════════════════════════════════════════════════


class TestEventAward:
    def test_organizer_awards_guest(self, ledger, event, student):
        event.guests.add(student)

        tx = ledger.apply(
            EventAwardRequest(actor="organzr1", event_id=event.pk, utorid="student1", amount=30)
        )

        event.refresh_from_db()
        student.refresh_from_db()
        assert tx.event == event
        assert tx.amount == 30
        assert student.points == 30
        assert event.points_remain == 70
        assert event.points_awarded == 30
        assert tx.as_dict()["relatedId"] == event.pk

    def test_guest_required(self, ledger, event, student):
        with pytest.raises(PreconditionError) as exc:
            ledger.apply(
                EventAwardRequest(actor="organzr1", event_id=event.pk, utorid="student1", amount=10)
            )
        assert exc.value.code == "NOT_A_GUEST"

    def test_non_organizer_forbidden(self, ledger, event, student, student_b):
        event.guests.add(student)
        with pytest.raises(AuthorizationError):
            ledger.apply(
                EventAwardRequest(actor="student2", event_id=event.pk, utorid="student1", amount=10)
            )

    def test_manager_may_award(self, ledger, event, manager, student):
        event.guests.add(student)
        tx = ledger.apply(
            EventAwardRequest(actor="manager1", event_id=event.pk, utorid="student1", amount=10)
        )
        assert tx.created_by == "manager1"

    def test_pool_exhausted(self, ledger, event, student):
        event.guests.add(student)
        with pytest.raises(PreconditionError) as exc:
            ledger.apply(
                EventAwardRequest(actor="organzr1", event_id=event.pk, utorid="student1", amount=101)
            )
        assert exc.value.code == "EVENT_POOL_EXHAUSTED"
        event.refresh_from_db()
        assert event.points_remain == 100

    def test_unknown_event(self, ledger, organizer, student):
        with pytest.raises(NotFoundError) as exc:
            ledger.apply(
                EventAwardRequest(actor="organzr1", event_id=999, utorid="student1", amount=10)
            )
        assert exc.value.code == "EVENT_NOT_FOUND"


# ═══════════════════════════════════════════════════════════════════
# Adjustments
# ═══════════════════════════════════════════════════════════════════


class TestAdjustment:
    def test_negative_adjustment(self, ledger, manager, cashier, student):
        purchase = ledger.apply(PurchaseRequest(actor="cashier1", utorid="student1", spent="25"))

        tx = ledger.apply(
            AdjustmentRequest(actor="manager1", utorid="student1", amount=-40, related_id=purchase.pk)
        )

        student.refresh_from_db()
        assert student.points == 60
        assert tx.related == purchase
        assert tx.as_dict()["relatedId"] == purchase.pk

    def test_cannot_overdraw(self, ledger, manager, student):
        with pytest.raises(PreconditionError) as exc:
            ledger.apply(AdjustmentRequest(actor="manager1", utorid="student1", amount=-1))
        assert exc.value.code == "INSUFFICIENT_POINTS"

    def test_cashier_forbidden(self, ledger, cashier, student):
        with pytest.raises(AuthorizationError):
            ledger.apply(AdjustmentRequest(actor="cashier1", utorid="student1", amount=10))

    def test_zero_amount(self, ledger, manager, student):
        with pytest.raises(ValidationError):
            ledger.apply(AdjustmentRequest(actor="manager1", utorid="student1", amount=0))

    def test_unknown_related(self, ledger, manager, student):
        with pytest.raises(NotFoundError) as exc:
            ledger.apply(
                AdjustmentRequest(actor="manager1", utorid="student1", amount=5, related_id=31337)
            )
        assert exc.value.code == "TRANSACTION_NOT_FOUND"


# ═══════════════════════════════════════════════════════════════════
# Suspicious review
# ═══════════════════════════════════════════════════════════════════


class TestSuspicious:
    def test_flag_reverses_and_reprocess_reapplies(self, ledger, manager, cashier, student):
        tx = ledger.apply(PurchaseRequest(actor="cashier1", utorid="student1", spent="10"))

        ledger.mark_suspicious(tx.pk, True, actor="manager1")
        student.refresh_from_db()
        tx.refresh_from_db()
        assert student.points == 0
        assert tx.suspicious is True
        assert tx.applied is False

        ledger.mark_suspicious(tx.pk, False, actor="manager1")
        student.refresh_from_db()
        assert student.points == 0

        ledger.reprocess(tx.pk, actor="manager1")
        student.refresh_from_db()
        assert student.points == 40

        with pytest.raises(ConflictError) as exc:
            ledger.reprocess(tx.pk, actor="manager1")
        assert exc.value.code == "ALREADY_APPLIED"
        student.refresh_from_db()
        assert student.points == 40

    def test_reprocess_while_suspicious(self, ledger, manager, cashier, student):
        student.suspicious = True
        student.save()
        tx = ledger.apply(PurchaseRequest(actor="cashier1", utorid="student1", spent="10"))

        with pytest.raises(PreconditionError) as exc:
            ledger.reprocess(tx.pk, actor="manager1")
        assert exc.value.code == "STILL_SUSPICIOUS"

    def test_flag_unchanged(self, ledger, manager, cashier, student):
        tx = ledger.apply(PurchaseRequest(actor="cashier1", utorid="student1", spent="10"))
        with pytest.raises(PreconditionError) as exc:
            ledger.mark_suspicious(tx.pk, False, actor="manager1")
        assert exc.value.code == "SUSPICIOUS_UNCHANGED"

    def test_transfer_not_flaggable(self, ledger, manager, student, student_b, fund):
        fund(student, 50)
        debit, _ = ledger.apply(TransferRequest(actor="student1", utorid="student2", amount=10))
        with pytest.raises(PreconditionError) as exc:
            ledger.mark_suspicious(debit.pk, True, actor="manager1")
        assert exc.value.code == "NOT_FLAGGABLE"

    def test_flag_rejected_when_points_spent(self, ledger, manager, cashier, student, student_b):
        tx = ledger.apply(PurchaseRequest(actor="cashier1", utorid="student1", spent="10"))
        ledger.apply(TransferRequest(actor="student1", utorid="student2", amount=30))

        with pytest.raises(PreconditionError) as exc:
            ledger.mark_suspicious(tx.pk, True, actor="manager1")

        assert exc.value.code == "INSUFFICIENT_POINTS"
        tx.refresh_from_db()
        assert tx.suspicious is False
        assert tx.applied is True

    def test_cashier_cannot_flag(self, ledger, cashier, student):
        tx = ledger.apply(PurchaseRequest(actor="cashier1", utorid="student1", spent="10"))
        with pytest.raises(AuthorizationError):
            ledger.mark_suspicious(tx.pk, True, actor="cashier1")


# ═══════════════════════════════════════════════════════════════════
# Dispatch, conservation, signals
# ═══════════════════════════════════════════════════════════════════


class TestLedger:
    def test_unknown_request_type(self, ledger):
        with pytest.raises(ValidationError) as exc:
            ledger.apply(object())
        assert exc.value.code == "UNKNOWN_REQUEST_TYPE"

    def test_balances_match_applied_transactions(
        self, ledger, manager, cashier, student, student_b, event, fund
    ):
        event.guests.add(student_b)
        ledger.apply(PurchaseRequest(actor="cashier1", utorid="student1", spent="33.33"))
        ledger.apply(TransferRequest(actor="student1", utorid="student2", amount=60))
        redemption = ledger.apply(RedemptionRequest(actor="student2", amount=25))
        ledger.apply(ProcessRedemptionRequest(actor="cashier1", transaction_id=redemption.pk))
        ledger.apply(
            EventAwardRequest(actor="organzr1", event_id=event.pk, utorid="student2", amount=15)
        )
        ledger.apply(RedemptionRequest(actor="student1", amount=10))

        for user in User.objects.all():
            applied = (
                Transaction.objects.filter(owner=user, applied=True).aggregate(total=Sum("amount"))
            )["total"] or 0
            assert user.points == applied
            assert user.points >= 0

        student.refresh_from_db()
        student_b.refresh_from_db()
        assert student.points == 134 - 60
        assert student_b.points == 60 - 25 + 15

    def test_signals_sent(self, ledger, cashier, student, fund):
        recorded = []
        processed = []

        def on_recorded(sender, transaction, **kwargs):
            recorded.append(transaction.pk)

        def on_processed(sender, transaction, actor, **kwargs):
            processed.append((transaction.pk, actor))

        transaction_recorded.connect(on_recorded)
        redemption_processed.connect(on_processed)
        try:
            fund(student, 100)
            tx = ledger.apply(RedemptionRequest(actor="student1", amount=20))
            ledger.apply(ProcessRedemptionRequest(actor="cashier1", transaction_id=tx.pk))
        finally:
            transaction_recorded.disconnect(on_recorded)
            redemption_processed.disconnect(on_processed)

        assert tx.pk in recorded
        assert processed == [(tx.pk, "cashier1")]
