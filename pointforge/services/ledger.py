"""Point ledger — the only writer of user balances.

Every mutation runs inside one ``transaction.atomic()`` block and locks the
rows it reads with ``select_for_update()``: a balance change and the
Transaction record describing it commit together or not at all.

Lock order is always event -> transaction -> users (by primary key), so
concurrent requests touching the same rows cannot deadlock each other.

Usage:
    ledger = PointLedger()
    tx = ledger.apply(PurchaseRequest(actor="cashier1", utorid="student1",
                                      spent=Decimal("25.00")))
    ledger.apply(ProcessRedemptionRequest(actor="cashier1", transaction_id=7))
"""

import logging
from collections.abc import Callable
from datetime import datetime

from django.db import IntegrityError, transaction
from django.utils import timezone

from pointforge.adapters.directory import get_user_directory
from pointforge.conf import pointforge_settings
from pointforge.exceptions import (
    AuthorizationError,
    ConflictError,
    ConsistencyViolation,
    NotFoundError,
    PreconditionError,
    ValidationError,
)
from pointforge.gates import Gates
from pointforge.models import (
    FLAGGABLE_TYPES,
    ROLE_RANK,
    Event,
    PromotionUsage,
    PromotionWallet,
    Role,
    Transaction,
    TransactionType,
    User,
)
from pointforge.protocols import UserDirectory, UserInfo
from pointforge.requests import (
    AdjustmentRequest,
    EventAwardRequest,
    LedgerRequest,
    ProcessRedemptionRequest,
    PurchaseRequest,
    RedemptionRequest,
    TransferRequest,
)
from pointforge.services.promotions import PromotionEvaluator, base_points
from pointforge.signals import redemption_processed, transaction_recorded

logger = logging.getLogger(__name__)


class PointLedger:
    """
    Validates transaction requests and applies their point deltas.

    Args:
        using: Database alias holding balances and the transaction log
        directory: UserDirectory used to resolve utorids
            (defaults to POINTFORGE["USER_DIRECTORY"])
        clock: Callable returning the current time (promotion windows,
            event end times, processed_at)
    """

    _HANDLERS = {
        PurchaseRequest: "_purchase",
        RedemptionRequest: "_request_redemption",
        ProcessRedemptionRequest: "_process_redemption",
        TransferRequest: "_transfer",
        EventAwardRequest: "_award_event",
        AdjustmentRequest: "_adjust",
    }

    def __init__(
        self,
        using: str = "default",
        directory: UserDirectory | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.using = using
        self.directory = directory or get_user_directory(using)
        self.clock = clock or timezone.now
        self.evaluator = PromotionEvaluator(using)

    def apply(self, request: LedgerRequest) -> Transaction | list[Transaction]:
        """
        Apply a ledger request.

        Returns:
            The created (or, for ProcessRedemptionRequest, updated)
            Transaction. Transfers return [debit_leg, credit_leg].

        Raises:
            ValidationError, PreconditionError, NotFoundError,
            AuthorizationError, ConflictError, ConsistencyViolation
        """
        handler_name = self._HANDLERS.get(type(request))
        if handler_name is None:
            raise ValidationError(
                "UNKNOWN_REQUEST_TYPE",
                request_type=type(request).__name__,
            )
        return getattr(self, handler_name)(request)

    # =========================================================================
    # Purchase
    # =========================================================================

    def _purchase(self, request: PurchaseRequest) -> Transaction:
        spent = Gates.positive_spent(request.spent)
        now = self.clock()

        actor = self.resolve(request.actor)
        Gates.role_allowed(actor, Role.CASHIER, "purchase")
        if not actor.activated:
            raise PreconditionError("USER_INACTIVE", utorid=actor.utorid)
        receiver = self.resolve(request.utorid)
        if pointforge_settings.REQUIRE_VERIFIED_RECEIVER:
            Gates.verified_user(receiver)

        suspicious = actor.suspicious or receiver.suspicious

        with transaction.atomic(using=self.using):
            account = self._lock_users(actor.id, receiver.id)[receiver.id]

            wallet = PromotionWallet.objects.using(self.using).filter(
                user=account
            ).values_list("promotion_id", flat=True)
            consumed = PromotionUsage.objects.using(self.using).filter(
                user=account
            ).values_list("promotion_id", flat=True)

            evaluation = self.evaluator.evaluate(
                spent,
                request.promotion_ids,
                now,
                wallet=list(wallet),
                consumed=list(consumed),
                require_any=request.require_promotions,
            )
            earned = base_points(spent) + evaluation.bonus_points
            if earned <= 0:
                raise ValidationError("INVALID_SPENT", value=str(spent), earned=earned)

            tx = self._record(
                TransactionType.PURCHASE,
                actor=actor,
                receiver=receiver,
                owner=account,
                amount=earned,
                spent=spent,
                suspicious=suspicious,
                remark=request.remark,
            )
            if evaluation.applied_ids:
                tx.promotions.add(*evaluation.applied_ids)
            self._consume_promotions(account, tx, evaluation.onetime_ids)

            if suspicious:
                self._log_deferred(tx)
            else:
                self._apply_effect(account, tx)

        logger.info(
            "Purchase #%s: %s earned %s pts (spent %s, promotions %s)",
            tx.pk, receiver.utorid, earned, spent, evaluation.applied_ids,
        )
        transaction_recorded.send(sender=Transaction, transaction=tx)
        return tx

    def _consume_promotions(self, account: User, tx: Transaction, promotion_ids: list[int]) -> None:
        """
        Mark one-time promotions as used by ``account``.

        The unique (promotion, user) constraint turns a concurrent double
        use into IntegrityError, reported as ConflictError.
        """
        for promotion_id in promotion_ids:
            try:
                with transaction.atomic(using=self.using):
                    PromotionUsage.objects.using(self.using).create(
                        promotion_id=promotion_id,
                        user=account,
                        transaction=tx,
                    )
            except IntegrityError:
                raise ConflictError(
                    "CONCURRENT_MODIFICATION",
                    promotion_id=promotion_id,
                    utorid=account.utorid,
                )

        if promotion_ids:
            PromotionWallet.objects.using(self.using).filter(
                user=account,
                promotion_id__in=promotion_ids,
            ).delete()

    # =========================================================================
    # Redemption: Requested -> Processed
    # =========================================================================

    def _request_redemption(self, request: RedemptionRequest) -> Transaction:
        Gates.positive_amount(request.amount)
        user = self.resolve(request.actor)
        Gates.verified_user(user)

        with transaction.atomic(using=self.using):
            account = self._lock_users(user.id)[user.id]
            Gates.sufficient_balance(account, request.amount)

            # Balance is untouched until the redemption is processed
            tx = self._record(
                TransactionType.REDEMPTION,
                actor=user,
                receiver=user,
                owner=account,
                amount=-request.amount,
                processed=False,
                remark=request.remark,
            )

        logger.info("Redemption #%s requested by %s: %s pts", tx.pk, user.utorid, request.amount)
        transaction_recorded.send(sender=Transaction, transaction=tx)
        return tx

    def _process_redemption(self, request: ProcessRedemptionRequest) -> Transaction:
        actor = self.resolve(request.actor)
        Gates.role_allowed(actor, Role.CASHIER, "process_redemption")
        if not actor.activated:
            raise PreconditionError("USER_INACTIVE", utorid=actor.utorid)

        with transaction.atomic(using=self.using):
            tx = self._lock_transaction(request.transaction_id)
            Gates.pending_redemption(tx)

            # Re-check now: other transactions may have spent the balance
            # since the request was accepted.
            account = self._lock_users(tx.owner_id)[tx.owner_id]
            Gates.sufficient_balance(account, -tx.amount)

            tx.processed = True
            tx.processed_by_id = actor.id
            tx.processed_at = self.clock()
            tx.save(update_fields=["processed", "processed_by", "processed_at"])
            self._apply_effect(account, tx)

        logger.info("Redemption #%s processed by %s", tx.pk, actor.utorid)
        redemption_processed.send(sender=Transaction, transaction=tx, actor=actor.utorid)
        return tx

    # =========================================================================
    # Transfer
    # =========================================================================

    def _transfer(self, request: TransferRequest) -> list[Transaction]:
        Gates.positive_amount(request.amount)
        sender = self.resolve(request.actor)
        Gates.verified_user(sender)
        recipient = self.resolve(request.utorid)
        if not recipient.activated:
            raise PreconditionError("USER_INACTIVE", utorid=recipient.utorid)
        if sender.id == recipient.id:
            raise PreconditionError("SELF_TRANSFER", utorid=sender.utorid)

        with transaction.atomic(using=self.using):
            accounts = self._lock_users(sender.id, recipient.id)
            Gates.sufficient_balance(accounts[sender.id], request.amount)

            debit = self._record(
                TransactionType.TRANSFER,
                actor=sender,
                receiver=recipient,
                owner=accounts[sender.id],
                amount=-request.amount,
                remark=request.remark,
            )
            credit = self._record(
                TransactionType.TRANSFER,
                actor=sender,
                receiver=recipient,
                owner=accounts[recipient.id],
                amount=request.amount,
                related=debit,
                remark=request.remark,
            )
            debit.related = credit
            debit.save(update_fields=["related"])
            Gates.transfer_balanced(debit, credit)

            self._apply_effect(accounts[sender.id], debit)
            self._apply_effect(accounts[recipient.id], credit)

        logger.info(
            "Transfer #%s/#%s: %s -> %s, %s pts",
            debit.pk, credit.pk, sender.utorid, recipient.utorid, request.amount,
        )
        transaction_recorded.send(sender=Transaction, transaction=debit)
        transaction_recorded.send(sender=Transaction, transaction=credit)
        return [debit, credit]

    # =========================================================================
    # Event award
    # =========================================================================

    def _award_event(self, request: EventAwardRequest) -> Transaction:
        Gates.positive_amount(request.amount)
        actor = self.resolve(request.actor)

        with transaction.atomic(using=self.using):
            event = self.lock_event(request.event_id)
            self.authorize_event(actor, event)

            guest = self.resolve(request.utorid)
            if not event.guests.filter(pk=guest.id).exists():
                raise PreconditionError("NOT_A_GUEST", event_id=event.pk, utorid=guest.utorid)
            Gates.event_pool(event, request.amount)

            event.points_remain -= request.amount
            event.points_awarded += request.amount
            event.save(update_fields=["points_remain", "points_awarded"])

            account = self._lock_users(guest.id)[guest.id]
            suspicious = actor.suspicious or guest.suspicious
            tx = self._record(
                TransactionType.EVENT,
                actor=actor,
                receiver=guest,
                owner=account,
                amount=request.amount,
                event=event,
                suspicious=suspicious,
                remark=request.remark,
            )
            if suspicious:
                self._log_deferred(tx)
            else:
                self._apply_effect(account, tx)

        logger.info(
            "Event #%s awarded %s pts to %s (%s left)",
            event.pk, request.amount, guest.utorid, event.points_remain,
        )
        transaction_recorded.send(sender=Transaction, transaction=tx)
        return tx

    def lock_event(self, event_id: int) -> Event:
        """Lock and return an event row. Call inside transaction.atomic()."""
        try:
            return Event.objects.using(self.using).select_for_update().get(pk=event_id)
        except Event.DoesNotExist:
            raise NotFoundError("EVENT_NOT_FOUND", event_id=event_id)

    def authorize_event(self, actor: UserInfo, event: Event) -> None:
        """Managers and the event's organizers may award event points."""
        if ROLE_RANK.get(str(actor.role), -1) >= ROLE_RANK[Role.MANAGER.value]:
            return
        if event.organizers.filter(pk=actor.id).exists():
            return
        raise AuthorizationError(
            "FORBIDDEN",
            utorid=actor.utorid,
            role=actor.role,
            operation="award_event",
            event_id=event.pk,
        )

    # =========================================================================
    # Adjustment
    # =========================================================================

    def _adjust(self, request: AdjustmentRequest) -> Transaction:
        amount = request.amount
        if isinstance(amount, bool) or not isinstance(amount, int) or amount == 0:
            raise ValidationError("INVALID_AMOUNT", field="amount", value=amount)

        actor = self.resolve(request.actor)
        Gates.role_allowed(actor, Role.MANAGER, "adjustment")
        receiver = self.resolve(request.utorid)
        suspicious = actor.suspicious or receiver.suspicious

        with transaction.atomic(using=self.using):
            related = None
            if request.related_id is not None:
                try:
                    related = Transaction.objects.using(self.using).get(pk=request.related_id)
                except Transaction.DoesNotExist:
                    raise NotFoundError("TRANSACTION_NOT_FOUND", transaction_id=request.related_id)

            account = self._lock_users(receiver.id)[receiver.id]
            if amount < 0 and not suspicious:
                Gates.sufficient_balance(account, -amount)

            tx = self._record(
                TransactionType.ADJUSTMENT,
                actor=actor,
                receiver=receiver,
                owner=account,
                amount=amount,
                related=related,
                suspicious=suspicious,
                remark=request.remark,
            )
            if suspicious:
                self._log_deferred(tx)
            else:
                self._apply_effect(account, tx)

        logger.info(
            "Adjustment #%s: %s %+d pts by %s (related #%s)",
            tx.pk, receiver.utorid, amount, actor.utorid, request.related_id,
        )
        transaction_recorded.send(sender=Transaction, transaction=tx)
        return tx

    # =========================================================================
    # Suspicious review
    # =========================================================================

    def mark_suspicious(self, transaction_id: int, suspicious: bool, actor: str) -> Transaction:
        """
        Flag or clear a purchase, adjustment, or event transaction.

        Flagging an applied transaction reverses its effect on the owner's
        balance. Clearing the flag does not re-apply it; call reprocess().

        Raises:
            AuthorizationError: Actor below manager
            NotFoundError: Unknown transaction
            PreconditionError: Not flaggable, flag unchanged, or the reversal
                would overdraw the balance
        """
        if not isinstance(suspicious, bool):
            raise ValidationError("INVALID_REQUEST", field="suspicious", value=suspicious)
        manager = self.resolve(actor)
        Gates.role_allowed(manager, Role.MANAGER, "mark_suspicious")

        with transaction.atomic(using=self.using):
            tx = self._lock_transaction(transaction_id)
            if tx.type not in FLAGGABLE_TYPES:
                raise PreconditionError("NOT_FLAGGABLE", transaction_id=tx.pk, type=tx.type)
            if tx.suspicious == suspicious:
                raise PreconditionError("SUSPICIOUS_UNCHANGED", transaction_id=tx.pk)

            tx.suspicious = suspicious
            tx.save(update_fields=["suspicious"])

            if suspicious and tx.applied:
                account = self._lock_users(tx.owner_id)[tx.owner_id]
                if tx.amount > 0:
                    Gates.sufficient_balance(account, tx.amount)
                self._reverse_effect(account, tx)

        logger.info(
            "Transaction #%s marked suspicious=%s by %s", tx.pk, suspicious, manager.utorid
        )
        return tx

    def reprocess(self, transaction_id: int, actor: str) -> Transaction:
        """
        Apply the deferred effect of a cleared transaction, exactly once.

        Raises:
            AuthorizationError: Actor below manager
            NotFoundError: Unknown transaction
            PreconditionError: Not flaggable, still suspicious, or overdraw
            ConflictError: Effect already applied
        """
        manager = self.resolve(actor)
        Gates.role_allowed(manager, Role.MANAGER, "reprocess")

        with transaction.atomic(using=self.using):
            tx = self._lock_transaction(transaction_id)
            if tx.type not in FLAGGABLE_TYPES:
                raise PreconditionError("NOT_FLAGGABLE", transaction_id=tx.pk, type=tx.type)
            if tx.suspicious:
                raise PreconditionError("STILL_SUSPICIOUS", transaction_id=tx.pk)
            if tx.applied:
                raise ConflictError("ALREADY_APPLIED", transaction_id=tx.pk)

            account = self._lock_users(tx.owner_id)[tx.owner_id]
            if tx.amount < 0:
                Gates.sufficient_balance(account, -tx.amount)
            self._apply_effect(account, tx)

        logger.info("Transaction #%s reprocessed by %s", tx.pk, manager.utorid)
        return tx

    # =========================================================================
    # Internals
    # =========================================================================

    def resolve(self, utorid: str) -> UserInfo:
        """Resolve a utorid through the directory or raise NotFoundError."""
        if not utorid or not isinstance(utorid, str):
            raise ValidationError("INVALID_REQUEST", field="utorid", value=utorid)
        info = self.directory.get_user(utorid)
        if info is None:
            raise NotFoundError("USER_NOT_FOUND", utorid=utorid)
        return info

    def _lock_users(self, *user_ids: int) -> dict[int, User]:
        """Lock user rows in primary-key order and return them by id."""
        ids = sorted(set(user_ids))
        users = {
            u.pk: u
            for u in User.objects.using(self.using)
            .select_for_update()
            .filter(pk__in=ids)
            .order_by("pk")
        }
        missing = [pk for pk in ids if pk not in users]
        if missing:
            raise NotFoundError("USER_NOT_FOUND", user_ids=missing)
        return users

    def _lock_transaction(self, transaction_id: int) -> Transaction:
        try:
            return (
                Transaction.objects.using(self.using)
                .select_for_update()
                .get(pk=transaction_id)
            )
        except (Transaction.DoesNotExist, ValueError, TypeError):
            raise NotFoundError("TRANSACTION_NOT_FOUND", transaction_id=transaction_id)

    def _record(
        self,
        tx_type: str,
        actor: UserInfo,
        receiver: UserInfo,
        owner: User,
        amount: int,
        **fields,
    ) -> Transaction:
        Gates.amount_sign(tx_type, amount, debit=owner.pk != receiver.id)
        return Transaction.objects.using(self.using).create(
            type=tx_type,
            issuer_id=actor.id,
            receiver_id=receiver.id,
            owner=owner,
            amount=amount,
            created_by=actor.utorid,
            **fields,
        )

    def _apply_effect(self, account: User, tx: Transaction) -> None:
        """Add tx.amount to the locked account and mark tx applied."""
        if tx.applied:
            raise ConsistencyViolation("ALREADY_APPLIED", transaction_id=tx.pk)
        account.points += tx.amount
        if account.points < 0:
            raise ConsistencyViolation(
                "NEGATIVE_BALANCE",
                utorid=account.utorid,
                transaction_id=tx.pk,
                balance=account.points,
            )
        account.save(update_fields=["points", "updated_at"])
        tx.applied = True
        tx.save(update_fields=["applied"])

    def _reverse_effect(self, account: User, tx: Transaction) -> None:
        account.points -= tx.amount
        if account.points < 0:
            raise ConsistencyViolation(
                "NEGATIVE_BALANCE",
                utorid=account.utorid,
                transaction_id=tx.pk,
                balance=account.points,
            )
        account.save(update_fields=["points", "updated_at"])
        tx.applied = False
        tx.save(update_fields=["applied"])

    def _log_deferred(self, tx: Transaction) -> None:
        logger.warning(
            "Transaction #%s (%s, %s pts) recorded as suspicious; effect deferred",
            tx.pk, tx.type, tx.amount,
        )
