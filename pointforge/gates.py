"""
PointForge Gates - Ledger validation rules.

L1: PositiveAmount - Point amounts in requests are positive integers
L2: RoleAllowed - Actor's role is at least the required role
L3: VerifiedUser - User is verified and activated
L4: SufficientBalance - Balance covers the debit
L5: PendingRedemption - Target is an unprocessed redemption
L6: EventPool - Event pool covers the total award
L7: AmountSign - Amount sign matches the transaction type
L8: TransferBalanced - Transfer legs sum to zero and reference each other

Gates raise the typed errors from pointforge.exceptions. Every gate has a
``check_*`` variant returning bool instead of raising.
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from pointforge.exceptions import (
    AuthorizationError,
    ConflictError,
    ConsistencyViolation,
    PointForgeError,
    PreconditionError,
    ValidationError,
)


@dataclass
class GateResult:
    """Result of a gate check."""

    passed: bool
    gate_name: str
    message: str = ""


# =============================================================================
# Gates
# =============================================================================


class Gates:
    """Ledger validation gates."""

    # Matches Transaction.spent decimal_places and max_digits
    SPENT_PLACES = 4
    SPENT_LIMIT = Decimal(10) ** 10

    # =========================================================================
    # L1: Positive Amount
    # =========================================================================

    @classmethod
    def positive_amount(cls, amount, field: str = "amount") -> GateResult:
        """
        L1: Point amounts are positive integers.

        Booleans are rejected even though bool is an int subclass.

        Raises:
            ValidationError: If amount is not a positive int
        """
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValidationError("INVALID_AMOUNT", field=field, value=amount)
        return GateResult(True, "L1_PositiveAmount")

    @classmethod
    def positive_spent(cls, spent) -> Decimal:
        """
        L1 (spend): Monetary spend parses as a positive Decimal with at most
        SPENT_PLACES fractional digits.

        Returns the spend unrounded; point arithmetic uses the full value.

        Raises:
            ValidationError: If spent is missing, unparsable, <= 0, or finer
                than the stored precision
        """
        if spent is None or isinstance(spent, bool):
            raise ValidationError("INVALID_SPENT", value=spent)
        try:
            value = Decimal(str(spent))
        except (InvalidOperation, ValueError):
            raise ValidationError("INVALID_SPENT", value=spent)
        if not value.is_finite() or value <= 0:
            raise ValidationError("INVALID_SPENT", value=spent)
        if value.normalize().as_tuple().exponent < -cls.SPENT_PLACES:
            raise ValidationError("INVALID_SPENT", value=spent, max_places=cls.SPENT_PLACES)
        if value >= cls.SPENT_LIMIT:
            raise ValidationError("INVALID_SPENT", value=spent, limit=str(cls.SPENT_LIMIT))
        return value

    @classmethod
    def check_positive_amount(cls, amount) -> bool:
        """Check without raising (returns bool)."""
        try:
            cls.positive_amount(amount)
            return True
        except ValidationError:
            return False

    # =========================================================================
    # L2: Role Allowed
    # =========================================================================

    @classmethod
    def role_allowed(cls, user, minimum: str, operation: str = "") -> GateResult:
        """
        L2: Actor's role is at least ``minimum``.

        Accepts a User row or a directory UserInfo.

        Raises:
            AuthorizationError: If the role is below the minimum
        """
        from pointforge.models import ROLE_RANK

        if ROLE_RANK.get(str(user.role), -1) < ROLE_RANK[str(minimum)]:
            raise AuthorizationError(
                "FORBIDDEN",
                utorid=user.utorid,
                role=user.role,
                required=str(minimum),
                operation=operation,
            )
        return GateResult(True, "L2_RoleAllowed")

    @classmethod
    def check_role_allowed(cls, user, minimum: str) -> bool:
        """Check without raising (returns bool)."""
        try:
            cls.role_allowed(user, minimum)
            return True
        except AuthorizationError:
            return False

    # =========================================================================
    # L3: Verified User
    # =========================================================================

    @classmethod
    def verified_user(cls, user) -> GateResult:
        """
        L3: User is verified and activated.

        Raises:
            PreconditionError: USER_NOT_VERIFIED or USER_INACTIVE
        """
        if not user.activated:
            raise PreconditionError("USER_INACTIVE", utorid=user.utorid)
        if not user.verified:
            raise PreconditionError("USER_NOT_VERIFIED", utorid=user.utorid)
        return GateResult(True, "L3_VerifiedUser")

    @classmethod
    def check_verified_user(cls, user) -> bool:
        """Check without raising (returns bool)."""
        try:
            cls.verified_user(user)
            return True
        except PreconditionError:
            return False

    # =========================================================================
    # L4: Sufficient Balance
    # =========================================================================

    @classmethod
    def sufficient_balance(cls, user, amount: int) -> GateResult:
        """
        L4: Balance covers a debit of ``amount``.

        Must be evaluated against a row locked with select_for_update() when
        the debit follows; an unlocked read is only advisory.

        Raises:
            PreconditionError: INSUFFICIENT_POINTS
        """
        if user.points < amount:
            raise PreconditionError(
                "INSUFFICIENT_POINTS",
                utorid=user.utorid,
                available=user.points,
                requested=amount,
            )
        return GateResult(True, "L4_SufficientBalance")

    @classmethod
    def check_sufficient_balance(cls, user, amount: int) -> bool:
        """Check without raising (returns bool)."""
        try:
            cls.sufficient_balance(user, amount)
            return True
        except PreconditionError:
            return False

    # =========================================================================
    # L5: Pending Redemption
    # =========================================================================

    @classmethod
    def pending_redemption(cls, tx) -> GateResult:
        """
        L5: Transaction is a redemption in the Requested state.

        Raises:
            PreconditionError: NOT_A_REDEMPTION
            ConflictError: REDEMPTION_ALREADY_PROCESSED
        """
        from pointforge.models import TransactionType

        if tx.type != TransactionType.REDEMPTION:
            raise PreconditionError("NOT_A_REDEMPTION", transaction_id=tx.pk, type=tx.type)
        if tx.processed:
            raise ConflictError(
                "REDEMPTION_ALREADY_PROCESSED",
                transaction_id=tx.pk,
                processed_by=tx.processed_by.utorid if tx.processed_by_id else None,
            )
        return GateResult(True, "L5_PendingRedemption")

    @classmethod
    def check_pending_redemption(cls, tx) -> bool:
        """Check without raising (returns bool)."""
        try:
            cls.pending_redemption(tx)
            return True
        except PointForgeError:
            return False

    # =========================================================================
    # L6: Event Pool
    # =========================================================================

    @classmethod
    def event_pool(cls, event, total: int) -> GateResult:
        """
        L6: Event pool covers ``total`` points.

        Raises:
            PreconditionError: EVENT_POOL_EXHAUSTED
        """
        if total > event.points_remain:
            raise PreconditionError(
                "EVENT_POOL_EXHAUSTED",
                event_id=event.pk,
                points_remain=event.points_remain,
                requested=total,
            )
        return GateResult(True, "L6_EventPool")

    @classmethod
    def check_event_pool(cls, event, total: int) -> bool:
        """Check without raising (returns bool)."""
        try:
            cls.event_pool(event, total)
            return True
        except PreconditionError:
            return False

    # =========================================================================
    # L7: Amount Sign
    # =========================================================================

    @classmethod
    def amount_sign(cls, tx_type: str, amount: int, debit: bool = False) -> GateResult:
        """
        L7: Amount sign matches the transaction type.

        purchase, event            > 0
        redemption                 < 0
        transfer                   < 0 for the debit leg, > 0 for the credit leg
        adjustment                 != 0

        Raises:
            ConsistencyViolation: SIGN_MISMATCH
        """
        from pointforge.models import TransactionType

        if tx_type in (TransactionType.PURCHASE, TransactionType.EVENT):
            ok = amount > 0
        elif tx_type == TransactionType.REDEMPTION:
            ok = amount < 0
        elif tx_type == TransactionType.TRANSFER:
            ok = amount < 0 if debit else amount > 0
        elif tx_type == TransactionType.ADJUSTMENT:
            ok = amount != 0
        else:
            ok = False

        if not ok:
            raise ConsistencyViolation("SIGN_MISMATCH", type=str(tx_type), amount=amount)
        return GateResult(True, "L7_AmountSign")

    # =========================================================================
    # L8: Transfer Balanced
    # =========================================================================

    @classmethod
    def transfer_balanced(cls, debit, credit) -> GateResult:
        """
        L8: Transfer legs sum to zero and reference each other.

        Raises:
            ConsistencyViolation: TRANSFER_UNBALANCED
        """
        linked = debit.related_id == credit.pk and credit.related_id == debit.pk
        if debit.amount + credit.amount != 0 or not linked:
            raise ConsistencyViolation(
                "TRANSFER_UNBALANCED",
                debit_id=debit.pk,
                credit_id=credit.pk,
                total=debit.amount + credit.amount,
                linked=linked,
            )
        return GateResult(True, "L8_TransferBalanced")

    @classmethod
    def check_transfer_balanced(cls, debit, credit) -> bool:
        """Check without raising (returns bool)."""
        try:
            cls.transfer_balanced(debit, credit)
            return True
        except ConsistencyViolation:
            return False
